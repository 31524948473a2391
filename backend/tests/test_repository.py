from __future__ import annotations

import json
from pathlib import Path

import pytest

from greencaddie_core import LocalRepository, StorageError
from greencaddie_core.models import Course, HoleScore, Round, Settings
from greencaddie_core.seed import DEMO_COURSE_ID


def _round(round_id: str, started_at: str, **extra) -> Round:
    return Round(id=round_id, course_id="c1", started_at=started_at, **extra)


def test_courses_are_listed_by_name(repository: LocalRepository) -> None:
    repository.courses.upsert(Course(id="b", name="Willow Creek"))
    repository.courses.upsert(Course(id="a", name="Aspen Links"))

    assert [course.id for course in repository.courses.list()] == ["a", "b"]


def test_rounds_are_listed_newest_first(repository: LocalRepository) -> None:
    repository.rounds.upsert_many(
        [
            _round("old", "2026-01-01T08:00:00.000Z"),
            _round("new", "2026-03-01T08:00:00.000Z"),
            _round("mid", "2026-02-01T08:00:00.000Z"),
        ]
    )

    assert [round_.id for round_ in repository.rounds.list()] == ["new", "mid", "old"]


def test_upsert_replaces_the_whole_record(repository: LocalRepository) -> None:
    repository.rounds.upsert(_round("r1", "2026-01-01T08:00:00.000Z", scores=[HoleScore(1, 4)], tee_id="white"))
    repository.rounds.upsert(_round("r1", "2026-01-01T08:00:00.000Z"))

    stored = repository.rounds.get_by_id("r1")
    assert stored is not None
    assert stored.scores == []
    assert stored.tee_id is None
    assert repository.rounds.count() == 1


def test_upsert_requires_an_id(repository: LocalRepository) -> None:
    with pytest.raises(ValueError):
        repository.courses.upsert(Course(id="", name="Nameless"))


def test_remove_and_clear(repository: LocalRepository) -> None:
    repository.rounds.upsert_many([_round("r1", "2026-01-01T08:00:00.000Z"), _round("r2", "2026-01-02T08:00:00.000Z")])

    repository.rounds.remove("r1")
    repository.rounds.remove("missing")
    assert [round_.id for round_ in repository.rounds.list()] == ["r2"]

    repository.rounds.clear()
    assert repository.rounds.list() == []


def test_writes_survive_a_new_repository_instance(tmp_path: Path) -> None:
    first = LocalRepository(tmp_path)
    first.rounds.upsert(_round("r1", "2026-01-01T08:00:00.000Z", scores=[HoleScore(1, 5)]))
    first.active_round.set("r1")
    first.settings.update(distance_unit="meters")

    second = LocalRepository(tmp_path)
    active = second.active_round.get_round()
    assert active is not None and active.total_strokes == 5
    assert second.settings.get().distance_unit == "meters"


def test_settings_row_is_created_on_first_read(repository: LocalRepository) -> None:
    assert not repository.settings.exists()

    settings = repository.settings.get()

    assert settings.distance_unit == "yards"
    assert settings.tile_source_id == "esri-world-imagery"
    assert repository.settings.exists()


def test_settings_update_rejects_unknown_fields(repository: LocalRepository) -> None:
    with pytest.raises(ValueError):
        repository.settings.update(theme="dark")


def test_settings_update_stamps_updated_at(repository: LocalRepository) -> None:
    before = repository.settings.get()
    after = repository.settings.update(tile_source_id="osm")

    assert after.tile_source_id == "osm"
    assert after.updated_at > before.updated_at


def test_active_round_pointer_may_dangle(repository: LocalRepository) -> None:
    repository.active_round.set("ghost")

    assert repository.active_round.get() == "ghost"
    assert repository.active_round.get_round() is None

    repository.active_round.clear()
    assert repository.active_round.get() is None


def test_profile_falls_back_to_guest_default(repository: LocalRepository) -> None:
    profile = repository.profile.get()
    assert profile.display_name == "Guest Player"
    assert profile.role == "member"


def test_ensure_seed_data_is_idempotent(repository: LocalRepository) -> None:
    repository.ensure_seed_data()
    repository.ensure_seed_data()

    courses = repository.courses.list()
    assert [course.id for course in courses] == [DEMO_COURSE_ID]
    assert courses[0].is_demo
    assert len(courses[0].holes) == 18


def test_ensure_seed_data_keeps_existing_settings(repository: LocalRepository) -> None:
    repository.settings.replace(Settings(distance_unit="meters", updated_at="2026-01-01T00:00:00.000Z"))
    repository.courses.upsert(Course(id="c1", name="Pine Ridge"))

    repository.ensure_seed_data()

    assert repository.settings.get().distance_unit == "meters"
    assert [course.id for course in repository.courses.list()] == ["c1"]


def test_corrupt_table_raises_storage_error(tmp_path: Path) -> None:
    (tmp_path / "rounds.json").write_text("{not json", encoding="utf-8")
    repository = LocalRepository(tmp_path)

    with pytest.raises(StorageError):
        repository.rounds.list()


def test_malformed_row_raises_storage_error(tmp_path: Path) -> None:
    row = {"id": "r1", "courseId": "c1", "startedAt": "2026-01-01T08:00:00.000Z", "scores": [{"holeNumber": "x"}]}
    (tmp_path / "rounds.json").write_text(json.dumps([row]), encoding="utf-8")
    repository = LocalRepository(tmp_path)

    with pytest.raises(StorageError):
        repository.rounds.get_by_id("r1")


def test_data_dir_defaults_to_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GREENCADDIE_DATA_DIR", str(tmp_path / "env-data"))

    repository = LocalRepository()
    repository.courses.upsert(Course(id="c1", name="Pine Ridge"))

    assert (tmp_path / "env-data" / "courses.json").exists()
