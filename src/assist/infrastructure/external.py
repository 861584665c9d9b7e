"""
Assist External Integrations
============================

YAML-backed relevance rules with hot reload through a watchdog observer.
"""

import threading
from pathlib import Path
from typing import Optional

import yaml
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.assist.application.services import IAssistRulesProvider
from src.assist.domain import AssistRules
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class RulesFileHandler(FileSystemEventHandler):
    """Watchdog event handler for rules file changes."""

    def __init__(self, rules_manager: "AssistRulesManager", rules_path: Path):
        self.rules_manager = rules_manager
        self.rules_path = rules_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.rules_path.resolve():
            logger.info("Assist rules file changed", extra={"path": str(event.src_path)})
            self.rules_manager.reload()


class AssistRulesManager(IAssistRulesProvider):
    """
    Thread-safe holder of the current assist rules.

    A missing file means built-in defaults. A reload that fails to parse
    keeps the previous rules.
    """

    def __init__(self):
        self._rules: Optional[AssistRules] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> AssistRules:
        """Initial rules load."""
        self._path = path
        rules = self._load_from_file(path)
        with self._lock:
            self._rules = rules
        return rules

    def _load_from_file(self, path: Path) -> AssistRules:
        if not path.exists():
            logger.info("Assist rules file not found, using defaults", extra={"path": str(path)})
            return AssistRules()

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return AssistRules(**data)

    def reload(self) -> bool:
        """Reload rules from file; returns False and keeps the old rules on error."""
        if self._path is None:
            return False

        try:
            new_rules = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValueError, TypeError) as e:
            logger.error("Failed to reload assist rules", extra={"path": str(self._path), "error": str(e)})
            return False

        with self._lock:
            self._rules = new_rules
        logger.info("Assist rules reloaded", extra={"path": str(self._path)})
        return True

    def start_watching(self) -> None:
        """Watch the rules file; skipped when it does not exist."""
        if self._path is None:
            raise RuntimeError("Rules not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Assist rules file absent, not watching", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            handler = RulesFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Watching assist rules file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static rules", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def rules(self) -> AssistRules:
        with self._lock:
            if self._rules is None:
                raise RuntimeError("Assist rules not loaded")
            return self._rules
