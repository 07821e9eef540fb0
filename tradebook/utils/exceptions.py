from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    PARSE = "parse"
    NOT_FOUND = "not_found"
    BACKEND = "backend"
    BROKER = "broker"


class JournalError(Exception):
    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.BACKEND,
        status_code: Optional[int] = None,
    ) -> None:
        self.message = message
        self.category = category
        self.status_code = status_code
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.category.value}] {self.message}"]
        if self.status_code:
            parts.append(f"(HTTP {self.status_code})")
        return " | ".join(parts)

    def to_dict(self) -> dict:
        return {"error": self.message, "category": self.category.value}


class ValidationError(JournalError):
    def __init__(self, message: str, field: str = "") -> None:
        self.field = field
        super().__init__(message, ErrorCategory.VALIDATION, 422)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.field:
            d["field"] = self.field
        return d


class CsvParseError(JournalError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCategory.PARSE, 400)


class CsvRowError(CsvParseError):
    def __init__(self, row: str, line_number: int = 0) -> None:
        self.row = row
        self.line_number = line_number
        super().__init__(f"Invalid trade data in row: {row}")


class NotFoundError(JournalError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCategory.NOT_FOUND, 404)


class StoreError(JournalError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCategory.BACKEND, 500)


class BrokerError(JournalError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message, ErrorCategory.BROKER, status_code)
