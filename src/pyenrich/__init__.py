# src/pyenrich/__init__.py

from .client import InferenceClient
from .config import ClientConfig, RunConfig
from .exceptions import (
    PerImageError,
    PyEnrichError,
    ReadError,
    RequestError,
    StartupError,
    ValidationError,
    WriteError,
)
from .models import ImageTask, InferenceResult, RunSummary
from .pipeline import BatchPipeline

__version__ = "0.1.0"

__all__ = [
    "BatchPipeline",
    "ClientConfig",
    "ImageTask",
    "InferenceClient",
    "InferenceResult",
    "PerImageError",
    "PyEnrichError",
    "ReadError",
    "RequestError",
    "RunConfig",
    "RunSummary",
    "StartupError",
    "ValidationError",
    "WriteError",
]
