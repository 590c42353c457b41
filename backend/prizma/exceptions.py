"""
Exception types shared across the PRIZMA backend.

Malformed receipt data never raises: parsing, normalization and
categorization return best-effort results with confidence and quality flags.
These exceptions cover configuration and upstream failures only.
"""


class PrizmaError(Exception):
    """Base class for PRIZMA errors."""


class ConfigurationError(PrizmaError):
    """Required configuration is missing or invalid (fatal at startup)."""


class ExternalServiceError(PrizmaError):
    """An external OCR/AI provider call failed after retries."""

    def __init__(self, message: str, status_code: int | None = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
