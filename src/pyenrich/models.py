# src/pyenrich/models.py

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ImageTask(BaseModel):
    """One eligible input image and the output file it maps to."""

    model_config = ConfigDict(frozen=True)

    path: Path
    name: str
    stem: str
    extension: str
    output_path: Path
    output_exists: bool = False


class Batch(BaseModel):
    """A group of images processed together before the next group starts."""

    index: int
    tasks: List[ImageTask]

    def __len__(self) -> int:
        return len(self.tasks)


class InferenceRequest(BaseModel):
    """A ready-to-send request body for one image."""

    model_config = ConfigDict(frozen=True)

    image: ImageTask
    url: str
    model: str
    payload: Dict[str, Any]


class InferenceResult(BaseModel):
    """
    The outcome of one call to the inference endpoint.

    On success `content` holds the model's reply (text or an already
    structured value). On failure `error` is set and `status_code` or
    `error_kind` tell what went wrong.
    """

    image: ImageTask
    content: Optional[Any] = None
    raw_response: Dict[str, Any] = Field(default_factory=dict)
    usage_metadata: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    error_kind: Optional[str] = None
    attempts: int = 1

    @property
    def was_successful(self) -> bool:
        return self.error is None


class OutputRecord(BaseModel):
    image: ImageTask
    path: Path
    content: Any


class FailureRecord(BaseModel):
    image: str
    stage: str
    reason: str


class RunSummary:
    """
    Outcome counters and failure details for one run.

    Shared by all workers of a batch; every mutation takes the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._succeeded = 0
        self._failed = 0
        self._skipped = 0
        self._cancelled = 0
        self._prompt_tokens = 0
        self._completion_tokens = 0
        self._failures: List[FailureRecord] = []
        self._written: List[Path] = []

    def record_success(
        self, record: OutputRecord, usage_metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        with self._lock:
            self._succeeded += 1
            self._written.append(record.path)
            if usage_metadata:
                self._prompt_tokens += int(usage_metadata.get("prompt_tokens") or 0)
                self._completion_tokens += int(
                    usage_metadata.get("completion_tokens") or 0
                )

    def record_failure(self, image: str, stage: str, reason: str) -> None:
        with self._lock:
            self._failed += 1
            self._failures.append(FailureRecord(image=image, stage=stage, reason=reason))

    def record_skipped(self, count: int = 1) -> None:
        with self._lock:
            self._skipped += count

    def record_cancelled(self, count: int = 1) -> None:
        with self._lock:
            self._cancelled += count

    @property
    def succeeded(self) -> int:
        with self._lock:
            return self._succeeded

    @property
    def failed(self) -> int:
        with self._lock:
            return self._failed

    @property
    def skipped(self) -> int:
        with self._lock:
            return self._skipped

    @property
    def cancelled(self) -> int:
        with self._lock:
            return self._cancelled

    @property
    def completed(self) -> int:
        """Images that reached a terminal outcome (success or failure)."""
        with self._lock:
            return self._succeeded + self._failed

    @property
    def failures(self) -> List[FailureRecord]:
        with self._lock:
            return list(self._failures)

    @property
    def written(self) -> List[Path]:
        with self._lock:
            return list(self._written)

    def as_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "succeeded": self._succeeded,
                "failed": self._failed,
                "skipped": self._skipped,
                "cancelled": self._cancelled,
                "prompt_tokens": self._prompt_tokens,
                "completion_tokens": self._completion_tokens,
            }

    def format(self, include_failures: bool = False) -> str:
        counts = self.as_dict()
        line = (
            f"Done: {counts['succeeded']} succeeded, {counts['failed']} failed, "
            f"{counts['skipped']} skipped"
        )
        if counts["cancelled"]:
            line += f", {counts['cancelled']} cancelled"
        lines = [line]
        if include_failures:
            for failure in self.failures:
                lines.append(f"  {failure.image} [{failure.stage}]: {failure.reason}")
        return "\n".join(lines)
