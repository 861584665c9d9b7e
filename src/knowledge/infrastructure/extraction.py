"""
Source Text Extraction
======================

Turns stored source bytes into plain text: page text via pypdf for PDFs,
UTF-8 decoding for everything else.
"""

import io
import os
from typing import List, Optional

import pypdf
from pypdf.errors import PyPdfError

from src.core import ValidationException
from src.knowledge.application.services import ITextExtractor

PDF_MIME_TYPE = "application/pdf"


def is_pdf(mime_type: Optional[str], filename: Optional[str]) -> bool:
    """PDF by declared mime type or by ``.pdf`` extension."""
    ext = os.path.splitext(filename or "")[1].lower()
    return mime_type == PDF_MIME_TYPE or ext == ".pdf"


class SourceTextExtractor(ITextExtractor):
    """Extractor used by the indexing worker."""

    def extract(self, data: bytes, mime_type: Optional[str], filename: Optional[str]) -> str:
        if is_pdf(mime_type, filename):
            return self._extract_pdf(data)
        return data.decode("utf-8", errors="replace")

    @staticmethod
    def _extract_pdf(data: bytes) -> str:
        try:
            reader = pypdf.PdfReader(io.BytesIO(data))
            parts: List[str] = []
            for page in reader.pages:
                page_text = (page.extract_text() or "").strip()
                if page_text:
                    parts.append(page_text)
        except (PyPdfError, ValueError, KeyError) as e:
            raise ValidationException(f"PDF text extraction failed: {e}")
        return "\n\n".join(parts)
