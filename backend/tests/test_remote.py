from __future__ import annotations

import json
from typing import List

import httpx
import pytest

from greencaddie_core import Credential, NetworkError, RemoteSyncClient, RoundConflict, RoundSaved
from greencaddie_core.models import Course, HoleScore, Round

from conftest import BASE_URL, FakeAccountServer


def _client(server: FakeAccountServer, credential: Credential | None = None) -> RemoteSyncClient:
    return RemoteSyncClient(BASE_URL, credential=credential, transport=server.transport())


def _round(updated_at: str, strokes: int = 4) -> Round:
    return Round(
        id="r1",
        course_id="c1",
        started_at="2026-03-01T08:00:00.000Z",
        updated_at=updated_at,
        scores=[HoleScore(1, strokes)],
    )


def test_bootstrap_sends_credential_headers(server: FakeAccountServer) -> None:
    client = _client(server, Credential(uid="u1", id_token="token-123"))

    snapshot = client.bootstrap("u1", "ann@example.com")

    request = server.requests[-1]
    assert request.url.path == "/api/users/u1/bootstrap"
    assert request.url.params["email"] == "ann@example.com"
    assert request.headers["Authorization"] == "Bearer token-123"
    assert request.headers["x-user-uid"] == "u1"
    assert snapshot.uid == "u1"
    assert snapshot.profile.display_name == "ann"


def test_requests_without_credential_omit_auth_headers(server: FakeAccountServer) -> None:
    _client(server).leaderboard()

    request = server.requests[-1]
    assert "Authorization" not in request.headers
    assert "x-user-uid" not in request.headers
    assert request.url.params["timeframe"] == "week"
    assert request.url.params["courseId"] == "all"
    assert request.url.params["role"] == "combined"


def test_upsert_course_returns_snapshot(server: FakeAccountServer) -> None:
    client = _client(server, Credential(uid="u1"))

    snapshot = client.upsert_course("u1", Course(id="c1", name="Pine Ridge"))

    assert [course.id for course in snapshot.courses] == ["c1"]
    assert json.loads(server.requests[-1].content)["name"] == "Pine Ridge"


def test_upsert_round_saves_newer_edit(server: FakeAccountServer) -> None:
    client = _client(server, Credential(uid="u1"))
    client.upsert_round("u1", _round("2026-03-01T09:00:00.000Z"))

    result = client.upsert_round("u1", _round("2026-03-01T10:00:00.000Z", strokes=6))

    assert isinstance(result, RoundSaved)
    assert result.snapshot.rounds[0].total_strokes == 6


def test_upsert_round_returns_conflict_for_stale_edit(server: FakeAccountServer) -> None:
    client = _client(server, Credential(uid="u1"))
    client.upsert_round("u1", _round("2026-03-01T10:00:00.000Z", strokes=6))

    result = client.upsert_round("u1", _round("2026-03-01T09:00:00.000Z", strokes=3))

    assert isinstance(result, RoundConflict)
    assert result.server_round.total_strokes == 6
    assert result.message == "Round conflict detected."
    assert server.round("u1", "r1")["scores"][0]["strokes"] == 6


def test_conflict_without_server_round_is_a_network_error() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(409, json={"error": "Busy."}))
    client = RemoteSyncClient(BASE_URL, transport=transport)

    with pytest.raises(NetworkError) as excinfo:
        client.upsert_round("u1", _round("2026-03-01T09:00:00.000Z"))

    assert excinfo.value.status_code == 409
    assert str(excinfo.value) == "Busy."


def test_server_error_is_raised_with_detail(server: FakeAccountServer) -> None:
    server.fail_status = 503

    with pytest.raises(NetworkError) as excinfo:
        _client(server, Credential(uid="u1")).delete_round("u1", "r1")

    assert excinfo.value.status_code == 503
    assert "Server unavailable." in str(excinfo.value)


def test_transport_failure_is_a_network_error(server: FakeAccountServer) -> None:
    server.offline = True

    with pytest.raises(NetworkError) as excinfo:
        _client(server, Credential(uid="u1")).set_active_round("u1", None)

    assert excinfo.value.status_code is None


def test_ids_are_escaped_as_path_segments() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"uid": "a/b"})

    client = RemoteSyncClient(BASE_URL, transport=httpx.MockTransport(handler))
    client.delete_course("a/b", "course 1")

    assert seen[0].url.raw_path.decode("ascii") == "/api/users/a%2Fb/courses/course%201"


def test_leaderboard_parses_entries(server: FakeAccountServer) -> None:
    server.leaderboard_entries = [
        {
            "uid": "u2",
            "displayName": "Bo",
            "role": "visitor",
            "rounds": 4,
            "bestScore": 79,
            "averageScore": 82.5,
            "position": 1,
        }
    ]

    entries = _client(server).leaderboard("month", "c1", "visitors")

    assert entries[0].display_name == "Bo"
    assert entries[0].best_score == 79
    assert server.requests[-1].url.params["courseId"] == "c1"


def test_leaderboard_rejects_unknown_filters(server: FakeAccountServer) -> None:
    client = _client(server)
    with pytest.raises(ValueError):
        client.leaderboard(timeframe="year")
    with pytest.raises(ValueError):
        client.leaderboard(role="guests")
    assert server.requests == []


def test_base_url_and_timeout_come_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GREENCADDIE_API_BASE_URL", "https://golf.example.com/api/")
    monkeypatch.setenv("GREENCADDIE_HTTP_TIMEOUT", "3.5")

    client = RemoteSyncClient()

    assert client.base_url == "https://golf.example.com/api"
    assert client.timeout == 3.5
