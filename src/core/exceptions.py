"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import List, Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class PermissionDeniedException(ApplicationException):
    """Exception when the caller's role does not allow the operation."""


class QuotaExceededException(ApplicationException):
    """Exception when a tenant has exhausted an entitlement."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class ServiceUnavailableException(ExternalServiceException):
    """Every candidate model host was exhausted without a usable answer."""

    def __init__(
        self,
        message: str,
        hosts_tried: Optional[List[str]] = None,
        last_error: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.hosts_tried = list(hosts_tried or [])
        self.last_error = last_error
        merged = {"hosts_tried": self.hosts_tried, "last_error": last_error}
        merged.update(details or {})
        super().__init__("Model Service", message, merged)


class ModelTimeoutException(ExternalServiceException):
    """The last model host attempt timed out."""

    def __init__(self, message: str, timeout_seconds: float, details: Optional[dict] = None):
        self.timeout_seconds = timeout_seconds
        merged = {"timeout_seconds": timeout_seconds}
        merged.update(details or {})
        super().__init__("Model Service", message, merged)


class PayloadTooLargeException(ExternalServiceException):
    """The prompt exceeded the model's context window."""

    hint = "Reduce included ticket comments / KB chunks, or use a larger-context model."

    def __init__(self, message: str, model: str, model_error: str):
        self.model = model
        self.model_error = model_error
        super().__init__(
            "Model Service",
            message,
            {"model": model, "model_error": model_error, "hint": self.hint}
        )


class ModelResponseException(ExternalServiceException):
    """A reachable model host answered with a non-retryable error response."""

    def __init__(self, host: str, status_code: Optional[int], body: str, model: str):
        self.host = host
        self.status_code = status_code
        self.body = body
        super().__init__(
            "Model Service",
            f"{host} returned an error response (status {status_code}): {body}",
            {"host": host, "status": status_code, "body": body, "model": model}
        )


class VectorStoreException(ExternalServiceException):
    """Exception for vector store failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Vector Store", message, details)


class QueueException(ExternalServiceException):
    """Exception for job queue failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Job Queue", message, details)
