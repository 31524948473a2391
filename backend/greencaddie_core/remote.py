"""HTTP client for the GreenCaddie account service.

Routes (all JSON, relative to ``base_url``)
-------------------------------------------
GET     /users/{uid}/bootstrap?email=      - full account snapshot
PUT     /users/{uid}/courses/{courseId}    - upsert a course
DELETE  /users/{uid}/courses/{courseId}    - remove a course
PUT     /users/{uid}/rounds/{roundId}      - upsert a round (409 on conflict)
DELETE  /users/{uid}/rounds/{roundId}      - remove a round
PUT     /users/{uid}/active-round          - body ``{"roundId": str | null}``
PUT     /users/{uid}/settings              - replace settings
PUT     /users/{uid}/profile               - replace profile
GET     /leaderboard?timeframe&courseId&role

Every mutation answers with the bootstrap snapshot.  When a credential is
supplied the client sends ``Authorization: Bearer <idToken>`` and
``x-user-uid``; without one the request still goes out and the server decides.

There is no retry policy here.  A non-2xx response or a transport failure is
raised as :class:`NetworkError`, except for the round upsert whose 409 carrying
a ``serverRound`` is returned as a :class:`RoundConflict` value.

Environment variables (direct kwargs take precedence):
    GREENCADDIE_API_BASE_URL  - base URL of the service (default http://localhost:8787/api)
    GREENCADDIE_HTTP_TIMEOUT  - request timeout in seconds (default 10)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import httpx

from .errors import NetworkError
from .models import BootstrapSnapshot, Course, LeaderboardEntry, Profile, Round, Settings

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8787/api"

LEADERBOARD_TIMEFRAMES = ("week", "month", "all")
LEADERBOARD_ROLES = ("combined", "members", "visitors")


@dataclass(frozen=True)
class Credential:
    """Bearer token for the signed-in account, issued by the auth provider."""

    uid: str
    id_token: str = ""


@dataclass
class RoundSaved:
    snapshot: BootstrapSnapshot


@dataclass
class RoundConflict:
    """The server holds a newer version of the round than the one sent."""

    server_round: Round
    message: str = "Conflict detected while syncing round."


RoundUpsertResult = Union[RoundSaved, RoundConflict]


class RemoteSyncClient:
    """Stateless request layer: one HTTP call per local mutation."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        credential: Credential | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("GREENCADDIE_API_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.credential = credential
        self.timeout = timeout if timeout is not None else float(os.getenv("GREENCADDIE_HTTP_TIMEOUT", "10"))
        self._transport = transport

    # ------------------------------------------------------------------
    # Account snapshot
    # ------------------------------------------------------------------

    def bootstrap(self, uid: str, email: str = "") -> BootstrapSnapshot:
        response = self._request("GET", f"/users/{_segment(uid)}/bootstrap", params={"email": email})
        return self._snapshot(response)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert_course(self, uid: str, course: Course) -> BootstrapSnapshot:
        response = self._request(
            "PUT",
            f"/users/{_segment(uid)}/courses/{_segment(course.id)}",
            json=course.to_dict(),
        )
        return self._snapshot(response)

    def delete_course(self, uid: str, course_id: str) -> BootstrapSnapshot:
        response = self._request("DELETE", f"/users/{_segment(uid)}/courses/{_segment(course_id)}")
        return self._snapshot(response)

    def upsert_round(self, uid: str, round_: Round) -> RoundUpsertResult:
        response = self._send(
            "PUT",
            f"/users/{_segment(uid)}/rounds/{_segment(round_.id)}",
            json=round_.to_dict(),
        )
        if response.status_code == 409:
            payload = _json_or_empty(response)
            message = str(payload.get("error") or "Conflict detected while syncing round.")
            server_round = payload.get("serverRound")
            if isinstance(server_round, dict):
                logger.info("Server rejected round %s as stale", round_.id)
                return RoundConflict(server_round=Round.from_dict(server_round), message=message)
            raise NetworkError(message, status_code=409)
        self._raise_for_status(response)
        return RoundSaved(snapshot=self._snapshot(response))

    def delete_round(self, uid: str, round_id: str) -> BootstrapSnapshot:
        response = self._request("DELETE", f"/users/{_segment(uid)}/rounds/{_segment(round_id)}")
        return self._snapshot(response)

    def set_active_round(self, uid: str, round_id: Optional[str]) -> BootstrapSnapshot:
        response = self._request("PUT", f"/users/{_segment(uid)}/active-round", json={"roundId": round_id})
        return self._snapshot(response)

    def save_settings(self, uid: str, settings: Settings) -> BootstrapSnapshot:
        response = self._request("PUT", f"/users/{_segment(uid)}/settings", json=settings.to_dict())
        return self._snapshot(response)

    def save_profile(self, uid: str, profile: Profile) -> BootstrapSnapshot:
        response = self._request("PUT", f"/users/{_segment(uid)}/profile", json=profile.to_dict())
        return self._snapshot(response)

    # ------------------------------------------------------------------
    # Leaderboard
    # ------------------------------------------------------------------

    def leaderboard(self, timeframe: str = "week", course_id: str = "all", role: str = "combined") -> List[LeaderboardEntry]:
        if timeframe not in LEADERBOARD_TIMEFRAMES:
            raise ValueError(f"Unknown leaderboard timeframe '{timeframe}'")
        if role not in LEADERBOARD_ROLES:
            raise ValueError(f"Unknown leaderboard role '{role}'")
        response = self._request(
            "GET",
            "/leaderboard",
            params={"timeframe": timeframe, "courseId": course_id, "role": role},
        )
        payload = _json_or_empty(response)
        entries = payload.get("entries")
        if not isinstance(entries, list):
            raise NetworkError("Unexpected leaderboard payload", status_code=response.status_code)
        return [LeaderboardEntry.from_dict(item) for item in entries if isinstance(item, dict)]

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.credential is not None:
            if self.credential.id_token:
                headers["Authorization"] = f"Bearer {self.credential.id_token}"
            headers["x-user-uid"] = self.credential.uid
        return headers

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
                return client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {path} request failed: {exc}") from exc

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = self._send(method, path, **kwargs)
        self._raise_for_status(response)
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = _json_or_empty(response).get("error")
            message = str(detail) if detail else f"API error: {response.status_code}"
            raise NetworkError(message, status_code=response.status_code) from exc

    @staticmethod
    def _snapshot(response: httpx.Response) -> BootstrapSnapshot:
        payload = _json_or_empty(response)
        if not payload:
            raise NetworkError("Unexpected response payload", status_code=response.status_code)
        return BootstrapSnapshot.from_dict(payload)


def _segment(value: str) -> str:
    return quote(value, safe="")


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
