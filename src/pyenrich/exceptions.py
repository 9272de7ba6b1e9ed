# src/pyenrich/exceptions.py

from pathlib import Path
from typing import Optional, Union


class PyEnrichError(Exception):
    """Base exception for all pyenrich errors."""


class StartupError(PyEnrichError):
    """Raised before any batch starts. Aborts the whole run."""


class ConfigurationError(StartupError):
    """Raised for an invalid or inconsistent run configuration."""


class DirectoryError(StartupError):
    """Raised when the input directory is missing or cannot be listed."""


class SchemaError(StartupError):
    """Raised when the schema file cannot be read or is not a JSON object."""


class OptionsError(StartupError):
    """Raised when the model options string is not a JSON object."""


class PerImageError(PyEnrichError):
    """
    A failure confined to one image.

    These are caught at the single-image task boundary, recorded in the
    run summary and never stop sibling images.
    """

    stage = "internal"

    def __init__(self, image: Union[str, Path], reason: str):
        self.image = str(image)
        self.reason = reason
        super().__init__(f"{self.image} [{self.stage}]: {reason}")


class ReadError(PerImageError):
    stage = "read"


class RequestError(PerImageError):
    stage = "request"

    def __init__(
        self,
        image: Union[str, Path],
        reason: str,
        status_code: Optional[int] = None,
    ):
        self.status_code = status_code
        super().__init__(image, reason)


class ValidationError(PerImageError):
    """The reply did not satisfy the configured schema."""

    stage = "validate"


class WriteError(PerImageError):
    stage = "write"
