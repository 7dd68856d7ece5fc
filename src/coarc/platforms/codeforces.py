"""Codeforces API client (submissions and profile info).

Every failure (transport, timeout, non-2xx, ``status != "OK"``, unexpected
payload) surfaces as ``PlatformError`` so batch jobs can skip the affected
unit with a single ``except``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

ACCEPTED = "OK"


class PlatformError(Exception):
    """External platform call failed or returned an unusable payload."""


@dataclass(frozen=True)
class Submission:
    submission_id: int
    problem_id: str
    verdict: str
    submitted_at: datetime
    problem_name: str = ""
    problem_rating: int | None = None
    tags: list[str] = field(default_factory=list)
    language: str = ""

    @property
    def accepted(self) -> bool:
        return self.verdict == ACCEPTED


@dataclass(frozen=True)
class UserInfo:
    handle: str
    rating: int | None = None
    max_rating: int | None = None
    rank: str | None = None
    max_rank: str | None = None


class SubmissionSource(Protocol):
    """What the duel and sync jobs need from a platform."""

    async def fetch_submissions(self, handle: str, count: int) -> list[Submission]: ...


class CodeforcesSource(SubmissionSource, Protocol):
    """Submissions plus profile info, for the solve sync."""

    async def fetch_user_info(self, handle: str) -> UserInfo: ...


def parse_submission(raw: dict[str, Any]) -> Submission:
    problem = raw["problem"]
    return Submission(
        submission_id=int(raw["id"]),
        problem_id=f"{problem.get('contestId', 0)}{problem['index']}",
        problem_name=problem.get("name", ""),
        problem_rating=problem.get("rating"),
        tags=list(problem.get("tags") or []),
        verdict=raw.get("verdict") or "",
        language=raw.get("programmingLanguage") or "",
        submitted_at=datetime.fromtimestamp(int(raw["creationTimeSeconds"]), tz=timezone.utc),
    )


class CodeforcesClient:
    """Thin async client over the public Codeforces API."""

    def __init__(
        self,
        base_url: str = "https://codeforces.com/api",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        client = await self._get_client()
        try:
            response = await client.get(f"{self._base_url}/{method}", params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise PlatformError(f"Codeforces {method} failed: {exc}") from exc
        except ValueError as exc:
            raise PlatformError(f"Codeforces {method} returned invalid JSON") from exc

        if not isinstance(data, dict) or data.get("status") != "OK":
            comment = data.get("comment") if isinstance(data, dict) else None
            raise PlatformError(f"Codeforces {method} error: {comment or 'status not OK'}")
        return data.get("result")

    async def fetch_submissions(self, handle: str, count: int = 100) -> list[Submission]:
        """Most recent ``count`` submissions, newest first."""
        result = await self._call("user.status", {"handle": handle, "from": 1, "count": count})
        try:
            return [parse_submission(raw) for raw in result or []]
        except (KeyError, TypeError, ValueError) as exc:
            raise PlatformError(f"Unexpected submission payload for {handle}") from exc

    async def fetch_user_info(self, handle: str) -> UserInfo:
        result = await self._call("user.info", {"handles": handle})
        if not result:
            raise PlatformError(f'Codeforces user "{handle}" not found')
        user = result[0]
        return UserInfo(
            handle=user.get("handle", handle),
            rating=user.get("rating"),
            max_rating=user.get("maxRating"),
            rank=user.get("rank"),
            max_rank=user.get("maxRank"),
        )
