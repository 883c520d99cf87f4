"""Tagged outcome variants for executor callbacks.

Providers report status as free-form strings ("OK", "COMPLETED", "succeeded",
"processing", ...) and bury artifacts in provider-specific payload shapes.
This module normalizes both so the reconciler only ever sees OutcomeStatus
and a plain URL.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

_COMPLETED_STATUSES = frozenset({"OK", "COMPLETED", "SUCCEEDED", "SUCCESS"})
_ERROR_STATUSES = frozenset({"ERROR", "FAILED", "CANCELED", "CANCELLED"})

_TRAINING_ARTIFACT_KEYS = ("artifactUrl", "artifact_url", "tensor_path", "tensorPath")
_IMAGE_KEYS = ("images", "imageUrl", "image_url", "imageUrls", "image_urls")


class OutcomeStatus(str, Enum):
    """Normalized executor status."""

    COMPLETED = "completed"
    ERROR = "error"
    IN_PROGRESS = "in_progress"

    @classmethod
    def from_wire(cls, raw: str | None) -> "OutcomeStatus":
        """Map a provider status string onto the three lifecycle outcomes.

        Unknown or missing statuses are treated as in-progress updates.
        """
        normalized = (raw or "").strip().upper()
        if normalized in _COMPLETED_STATUSES:
            return cls.COMPLETED
        if normalized in _ERROR_STATUSES:
            return cls.ERROR
        return cls.IN_PROGRESS


def _first_url(value: Any) -> str | None:
    """Return the first non-empty URL in a string, {"url": ...} dict or list of either."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return _first_url(value.get("url"))
    if isinstance(value, (list, tuple)):
        for item in value:
            url = _first_url(item)
            if url:
                return url
    return None


def extract_training_artifact(payload: dict[str, Any] | None) -> str | None:
    """Find the trained-weights location in a training payload.

    Supported shapes:
    - {"artifactUrl": "..."} / {"tensor_path": "..."}
    - {"diffusers_lora_file": {"url": "..."}}
    - {"output": {"weights": "..."}} (Replicate trainings)
    """
    if not payload:
        return None

    for key in _TRAINING_ARTIFACT_KEYS:
        url = _first_url(payload.get(key))
        if url:
            return url

    url = _first_url(payload.get("diffusers_lora_file"))
    if url:
        return url

    output = payload.get("output")
    if isinstance(output, dict):
        return _first_url(output.get("weights"))
    return _first_url(output)


def extract_image_url(payload: dict[str, Any] | None) -> str | None:
    """Find the first generated image URL in a generation payload.

    Supported shapes:
    - {"images": [{"url": "..."}, ...]} or {"images": ["...", ...]}
    - {"imageUrl": "..."} / {"image_url": "..."}
    - {"output": ["...", ...]} or {"output": "..."} (Replicate predictions)
    """
    if not payload:
        return None

    for key in _IMAGE_KEYS:
        url = _first_url(payload.get(key))
        if url:
            return url

    return _first_url(payload.get("output"))


@dataclass(frozen=True)
class TrainingOutcome:
    """Outcome reported for a training job."""

    status: OutcomeStatus
    artifact_url: str | None = None
    error: str | None = None
    raw_status: str = ""

    @classmethod
    def from_wire(
        cls, status: str | None, payload: dict[str, Any] | None = None, error: str | None = None
    ) -> "TrainingOutcome":
        return cls(
            status=OutcomeStatus.from_wire(status),
            artifact_url=extract_training_artifact(payload),
            error=error,
            raw_status=status or "",
        )


@dataclass(frozen=True)
class GenerationOutcome:
    """Outcome reported for an image generation job."""

    status: OutcomeStatus
    image_url: str | None = None
    error: str | None = None
    raw_status: str = ""

    @classmethod
    def from_wire(
        cls, status: str | None, payload: dict[str, Any] | None = None, error: str | None = None
    ) -> "GenerationOutcome":
        return cls(
            status=OutcomeStatus.from_wire(status),
            image_url=extract_image_url(payload),
            error=error,
            raw_status=status or "",
        )
