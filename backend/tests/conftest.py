from __future__ import annotations

import datetime as dt
import itertools
import json
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from greencaddie_core import LocalRepository, RemoteSyncClient, SyncCoordinator
from greencaddie_core.models import parse_timestamp, utc_now_iso

BASE_URL = "http://sync.test/api"


class TickingClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: dt.datetime | None = None) -> None:
        self.current = start or dt.datetime(2026, 3, 1, 8, 0, tzinfo=dt.UTC)

    def __call__(self) -> str:
        self.current += dt.timedelta(seconds=1)
        return utc_now_iso(self.current)


class FakeAccountServer:
    """In-memory stand-in for the account service, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.users: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.leaderboard_entries: List[Dict[str, Any]] = []
        self.offline = False
        self.fail_status: Optional[int] = None
        self.round_gate: Optional[threading.Event] = None
        self.round_entered = threading.Event()

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def user(self, uid: str, email: str = "") -> Dict[str, Any]:
        if uid not in self.users:
            self.users[uid] = {
                "uid": uid,
                "email": email,
                "profile": {
                    "uid": uid,
                    "email": email,
                    "displayName": email.split("@")[0] or "Guest Player",
                    "role": "member",
                    "membershipStatus": "pending",
                    "handicapIndex": "",
                    "homeCourse": "",
                    "updatedAt": "2026-01-01T00:00:00.000Z",
                },
                "settings": {
                    "id": "user-settings",
                    "distanceUnit": "yards",
                    "tileSourceId": "esri-world-imagery",
                    "updatedAt": "2026-01-01T00:00:00.000Z",
                },
                "courses": [],
                "rounds": [],
                "activeRoundId": None,
            }
        return self.users[uid]

    def round(self, uid: str, round_id: str) -> Optional[Dict[str, Any]]:
        for entry in self.user(uid)["rounds"]:
            if entry["id"] == round_id:
                return entry
        return None

    def paths(self) -> List[str]:
        return [f"{request.method} {request.url.path}" for request in self.requests]

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("network unreachable", request=request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"error": "Server unavailable."})

        parts = request.url.path.removeprefix("/api").strip("/").split("/")
        body = json.loads(request.content) if request.content else None

        if parts == ["leaderboard"]:
            return httpx.Response(200, json={"entries": self.leaderboard_entries})
        if len(parts) < 3 or parts[0] != "users":
            return httpx.Response(404, json={"error": "Not found."})

        uid, resource = parts[1], parts[2]
        doc = self.user(uid, request.url.params.get("email", ""))
        method = request.method

        if resource == "bootstrap" and method == "GET":
            return self._snapshot(doc)
        if resource == "courses" and len(parts) == 4:
            doc["courses"] = [entry for entry in doc["courses"] if entry["id"] != parts[3]]
            if method == "PUT":
                doc["courses"].append(body)
            return self._snapshot(doc)
        if resource == "rounds" and len(parts) == 4:
            return self._round(doc, parts[3], method, body)
        if resource == "active-round" and method == "PUT":
            doc["activeRoundId"] = body.get("roundId")
            return self._snapshot(doc)
        if resource == "settings" and method == "PUT":
            doc["settings"] = {**body, "id": "user-settings"}
            return self._snapshot(doc)
        if resource == "profile" and method == "PUT":
            doc["profile"] = {**body, "uid": uid}
            return self._snapshot(doc)
        return httpx.Response(404, json={"error": "Not found."})

    def _round(self, doc: Dict[str, Any], round_id: str, method: str, body: Any) -> httpx.Response:
        if method == "DELETE":
            doc["rounds"] = [entry for entry in doc["rounds"] if entry["id"] != round_id]
            if doc["activeRoundId"] == round_id:
                doc["activeRoundId"] = None
            return self._snapshot(doc)

        if self.round_gate is not None:
            self.round_entered.set()
            self.round_gate.wait(timeout=5)

        existing = next((entry for entry in doc["rounds"] if entry["id"] == round_id), None)
        if existing is not None:
            existing_stamp = parse_timestamp(existing.get("updatedAt") or existing.get("startedAt"))
            incoming_stamp = parse_timestamp(body.get("updatedAt") or body.get("startedAt"))
            if existing_stamp is not None and incoming_stamp is not None and existing_stamp > incoming_stamp:
                return httpx.Response(409, json={"error": "Round conflict detected.", "serverRound": existing})
        doc["rounds"] = [entry for entry in doc["rounds"] if entry["id"] != round_id]
        doc["rounds"].append(body)
        return self._snapshot(doc)

    @staticmethod
    def _snapshot(doc: Dict[str, Any]) -> httpx.Response:
        return httpx.Response(200, json=json.loads(json.dumps(doc)))


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def ids() -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"generated-{next(counter)}"


@pytest.fixture
def server() -> FakeAccountServer:
    return FakeAccountServer()


@pytest.fixture
def repository(tmp_path: Path, clock: TickingClock) -> LocalRepository:
    return LocalRepository(tmp_path / "data", clock=clock)


@pytest.fixture
def coordinator(repository: LocalRepository, server: FakeAccountServer, clock, ids) -> SyncCoordinator:
    sync = SyncCoordinator(
        repository,
        remote_factory=lambda credential: RemoteSyncClient(
            BASE_URL, credential=credential, transport=server.transport()
        ),
        app_version="0.2.0",
        clock=clock,
        id_factory=ids,
    )
    sync.init()
    return sync
