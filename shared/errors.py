"""
Error taxonomy shared by Adjutant services.

Per-article errors (TransientIO, ModelUnavailable, MalformedModelOutput) are
contained to the article being processed. Run-level errors
(ConfigurationInvalid, StorageUnavailable) abort a run before or between items.
"""

from typing import List, Optional


class AdjutantError(Exception):
    """Base class for all Adjutant errors."""


class TransientIO(AdjutantError):
    """Network or timeout failure that may succeed on retry."""


class ModelUnavailable(TransientIO):
    """The model gateway exhausted its retries for a tier."""

    def __init__(self, tier: str, message: str):
        super().__init__(f"{tier} model unavailable: {message}")
        self.tier = tier


class MalformedModelOutput(AdjutantError):
    """Model output violated the expected schema or ranges."""

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message)
        self.issues = list(issues or [])


class ConfigurationInvalid(AdjutantError):
    """Required configuration is missing or malformed."""


class StorageWriteFailure(AdjutantError):
    """A document could not be written."""


class StorageUnavailable(AdjutantError):
    """The document store cannot be reached."""


class ProfileValidationError(AdjutantError):
    """A user profile failed per-item validation and was not saved."""

    def __init__(self, issues: List[str]):
        super().__init__("; ".join(issues))
        self.issues = list(issues)


class ArticleNotFound(AdjutantError):
    """No stored article has the requested identifier."""


class ArticleProcessingError(AdjutantError):
    """An unexpected error interrupted one article; the run carries on."""

    def __init__(self, url: str, stage: str, cause: Exception):
        super().__init__(f"{type(cause).__name__} at {stage}: {cause}")
        self.url = url
        self.stage = stage
        self.cause = cause
