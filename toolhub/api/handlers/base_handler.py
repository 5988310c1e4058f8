"""
Base handler class with common utilities and shared functionality
"""

import logging
from typing import Any, List, Optional


class BaseHandler:
    """
    Base class for all handlers providing common utilities and shared functionality
    """

    def __init__(self, service, logger):
        self.service = service
        self.logger = logger

    def _log(self, level: int, message: str, **kwargs):
        # Structured context rides along as "message | {key: value}"
        self.logger.log(level, f"{message} | {kwargs}" if kwargs else message)

    def log_info(self, message: str, **kwargs):
        self._log(logging.INFO, message, **kwargs)

    def log_warning(self, message: str, **kwargs):
        self._log(logging.WARNING, message, **kwargs)

    def log_debug(self, message: str, **kwargs):
        self._log(logging.DEBUG, message, **kwargs)

    def log_error(self, message: str, error: Exception = None, **kwargs):
        """Error-level log; the exception text is folded into the context"""
        if error is not None:
            kwargs = {"error": str(error), **kwargs}
        self._log(logging.ERROR, message, **kwargs)

    @staticmethod
    def parse_csv(value: Optional[str]) -> Optional[List[str]]:
        """Split a comma separated query parameter, ignoring blanks"""
        if not value:
            return None
        items = [item.strip() for item in value.split(",") if item.strip()]
        return items or None

    @staticmethod
    def parse_flag(value: Optional[str], default: bool = True) -> bool:
        """Query flags count as true unless given literally as 'false'"""
        if value is None:
            return default
        return value.lower() != "false"

    @staticmethod
    def to_json(data: Any) -> Any:
        """Make Mongo documents and models JSON friendly"""
        if hasattr(data, "model_dump"):
            return data.model_dump(mode="json")
        if isinstance(data, list):
            return [BaseHandler.to_json(item) for item in data]
        if isinstance(data, dict):
            return {key: BaseHandler.to_json(value) for key, value in data.items()}
        if hasattr(data, "isoformat"):
            return data.isoformat()
        return data
