"""Image analysis contract and model-output parsing.

The vision model itself is an external collaborator. This module defines what
the rest of the backend expects from it (`ImageAnalyzer`) and how raw model
output is turned into an `AnalysisResult`.
"""

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Protocol

from flockcount.services.exceptions import AnalysisResponseError, InvalidImageError

ANALYSIS_PROMPT = (
    "Count the number of chickens in this image and identify them. "
    "Return STRICT JSON with keys: count (integer), breed (string or null), "
    "confidence (0-100 integer), labels (array of short strings), "
    "age (string or null), health (string or null). No markdown."
)


@dataclass
class AnalysisResult:
    """Structured result of analyzing one image."""

    count: int
    breed: str | None = None
    confidence: int | None = None
    labels: list[str] = field(default_factory=list)


class ImageAnalyzer(Protocol):
    """Anything that can turn an encoded image into an AnalysisResult.

    Implementations raise VisionTransientError for retryable provider failures
    and VisionPermanentError for rejected requests.
    """

    async def analyze(self, image: str) -> AnalysisResult: ...


def validate_image_data_url(image: Any) -> str:
    """Check that `image` is a base64 `data:image/...` URL.

    Raises:
        InvalidImageError: If the payload is missing, not a data URL, or not base64
    """
    if not isinstance(image, str) or not image.startswith("data:image/"):
        raise InvalidImageError("Image must be a data:image/* URL")

    header, _, content = image.partition(",")
    if "base64" not in header or not content:
        raise InvalidImageError("Image must be base64 encoded")

    try:
        base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidImageError("Image payload is not valid base64")

    return image


def _extract_json(text: str) -> dict:
    text = text.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Models occasionally wrap JSON in prose or code fences
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            raise AnalysisResponseError(f"No JSON object in model output: {text[:100]!r}")
        try:
            data = json.loads(text[start : end + 1])
        except json.JSONDecodeError as e:
            raise AnalysisResponseError(f"Invalid JSON in model output: {e}")

    if not isinstance(data, dict):
        raise AnalysisResponseError("Model output is not a JSON object")
    return data


def parse_analysis(content: str | None) -> AnalysisResult:
    """Parse model output into an AnalysisResult.

    Labels keep the model's order; `age:<value>` and `health:<value>` tags are
    appended when the model reports them. Confidence is clamped to 0-100.

    Raises:
        AnalysisResponseError: If the output is empty or has no valid count
    """
    if not content:
        raise AnalysisResponseError("Empty response from vision model")

    data = _extract_json(content)

    raw_count = data.get("count")
    if isinstance(raw_count, bool):
        raise AnalysisResponseError("Invalid count received from vision model")
    try:
        count = int(raw_count)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise AnalysisResponseError("Invalid count received from vision model")
    if count < 0:
        raise AnalysisResponseError(f"Negative count received from vision model: {count}")

    breed = data.get("breed")
    if breed is not None:
        breed = str(breed).strip() or None

    confidence = data.get("confidence")
    if confidence is not None:
        try:
            confidence = max(0, min(100, round(float(confidence))))
        except (TypeError, ValueError):
            confidence = None

    labels = [str(label) for label in data.get("labels") or [] if str(label).strip()]
    for key in ("age", "health"):
        value = data.get(key)
        if value:
            labels.append(f"{key}:{value}")

    return AnalysisResult(count=count, breed=breed, confidence=confidence, labels=labels)
