"""HTTP client for the FlockCount server API.

Translates HTTP outcomes into the service error hierarchy:
- 401/403 -> AuthorizationError (sign in again; never retried automatically)
- 408/429/5xx, timeouts, network errors -> TransientError
- Other 4xx -> PermanentError
- 2xx with a body that does not match the contract -> MalformedResponseError
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

import httpx
from pydantic import Field, ValidationError

from flockcount.client.identifiers import RemoteId
from flockcount.client.models import CountRecord, WireModel
from flockcount.services.exceptions import (
    AuthorizationError,
    MalformedResponseError,
    PermanentError,
    TransientError,
)


class AchievementInfo(WireModel):
    id: int
    name: str
    description: str
    icon: str
    requirement: int
    type: str
    earned_at: datetime | None = None


class AnalyzeResult(WireModel):
    """Body of a successful POST /api/analyze."""

    count: CountRecord
    new_achievements: list[AchievementInfo] = Field(default_factory=list)


class AchievementsOverview(WireModel):
    achievements: list[AchievementInfo] = Field(default_factory=list)
    available_achievements: list[AchievementInfo] = Field(default_factory=list)


def raise_for_status(response: httpx.Response) -> None:
    """Raise the service error matching a non-2xx response."""
    code = response.status_code
    if 200 <= code < 300:
        return

    detail = _error_detail(response)
    if code in (401, 403):
        raise AuthorizationError(f"Not authorized ({code}): {detail}")
    if code in (408, 429) or code >= 500:
        raise TransientError(f"Server unavailable ({code}): {detail}")
    if 400 <= code < 500:
        raise PermanentError(f"Request rejected ({code}): {detail}")
    raise MalformedResponseError(f"Unexpected response ({code}): {detail}")


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        for key in ("detail", "message", "error"):
            if body.get(key):
                return str(body[key])
    return str(body)[:200]


class FlockCountClient:
    """Async client for the count, analyze and achievement endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        cookies: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client.

        Args:
            base_url: Server root, e.g. http://localhost:5000
            timeout: Per-request timeout in seconds
            cookies: Session cookies from the external auth flow
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cookies = cookies or {}
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            cookies=self.cookies,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientError(f"Request timeout after {self.timeout}s: {e}")
        except httpx.HTTPError as e:
            raise TransientError(f"Network error: {e}")

        raise_for_status(response)
        return response

    async def analyze(self, image: str) -> AnalyzeResult:
        """POST /api/analyze with a base64 data URL.

        Raises:
            TransientError: Network failure, timeout, 408/429/5xx, malformed body
            AuthorizationError: 401/403
            PermanentError: Other 4xx (e.g. undecodable image)
        """
        response = await self._request("POST", "/api/analyze", json={"image": image})
        try:
            return AnalyzeResult.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise MalformedResponseError(f"Invalid analyze response: {e}")

    async def list_counts(self) -> list[CountRecord]:
        """GET /api/counts for the signed-in user."""
        response = await self._request("GET", "/api/counts")
        try:
            body = response.json()
            return [CountRecord.model_validate(item) for item in body["counts"]]
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            raise MalformedResponseError(f"Invalid counts response: {e}")

    async def delete_counts(self, ids: Iterable[RemoteId]) -> None:
        """DELETE /api/counts for server ids; no request when the set is empty."""
        wire_ids = sorted({count_id.wire for count_id in ids})
        if not wire_ids:
            return
        await self._request("DELETE", "/api/counts", json={"countIds": wire_ids})

    async def get_achievements(self) -> AchievementsOverview:
        """GET /api/achievements for the signed-in user."""
        response = await self._request("GET", "/api/achievements")
        try:
            return AchievementsOverview.model_validate(response.json()["achievements"])
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            raise MalformedResponseError(f"Invalid achievements response: {e}")
