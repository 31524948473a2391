"""Durable local store for courses, rounds and the per-user singletons.

Every table lives in its own JSON file under ``data_dir``::

    courses.json        list of Course records (keyed by id)
    rounds.json         list of Round records (keyed by id)
    settings.json       the single Settings row (id ``user-settings``)
    active_round.json   the active-round pointer, absent when no round is active
    profile.json        the signed-in user's profile

Writes are full replacements keyed by id; nothing here talks to the network.
Read or write failures surface as :class:`StorageError`.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from .errors import StorageError
from .models import Course, Profile, Round, Settings, parse_timestamp, utc_now_iso
from .seed import demo_course

logger = logging.getLogger(__name__)

ACTIVE_ROUND_KEY = "active-round"

RecordT = TypeVar("RecordT", Course, Round)


class _JsonFile:
    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self, default: Any) -> Any:
        if not self.path.exists():
            return default
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Failed to read local data store {self.path}") from exc

    def write(self, data: Any) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StorageError(f"Failed to write local data store {self.path}") from exc

    def remove(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"Failed to remove local data store {self.path}") from exc


class _Table(Generic[RecordT]):
    """A keyed table of records persisted as a JSON list."""

    def __init__(self, path: Path, factory: Callable[[Dict[str, Any]], RecordT]) -> None:
        self._file = _JsonFile(path)
        self._factory = factory

    def _load(self) -> Dict[str, RecordT]:
        rows = self._file.read([])
        if not isinstance(rows, list):
            raise StorageError(f"Local data store {self._file.path} is not a list")
        records: Dict[str, RecordT] = {}
        for row in rows:
            if not isinstance(row, dict):
                logger.warning("Skipping non-dict row in %s", self._file.path)
                continue
            try:
                record = self._factory(row)
            except (TypeError, ValueError) as exc:
                raise StorageError(f"Local data store {self._file.path} holds an unreadable record") from exc
            records[record.id] = record
        return records

    def _save(self, records: Dict[str, RecordT]) -> None:
        self._file.write([record.to_dict() for record in records.values()])

    def _sort(self, records: List[RecordT]) -> List[RecordT]:
        return records

    def list(self) -> List[RecordT]:
        return self._sort(list(self._load().values()))

    def get_by_id(self, record_id: str) -> Optional[RecordT]:
        return self._load().get(record_id)

    def upsert(self, record: RecordT) -> str:
        if not record.id:
            raise ValueError("Record id is required")
        records = self._load()
        records[record.id] = record
        self._save(records)
        return record.id

    def upsert_many(self, items: List[RecordT]) -> int:
        records = self._load()
        for record in items:
            if not record.id:
                raise ValueError("Record id is required")
            records[record.id] = record
        self._save(records)
        return len(items)

    def remove(self, record_id: str) -> None:
        records = self._load()
        if records.pop(record_id, None) is not None:
            self._save(records)

    def clear(self) -> None:
        self._file.remove()

    def count(self) -> int:
        return len(self._load())


class CourseTable(_Table[Course]):
    def _sort(self, records: List[Course]) -> List[Course]:
        return sorted(records, key=lambda course: (course.name, course.id))


class RoundTable(_Table[Round]):
    def _sort(self, records: List[Round]) -> List[Round]:
        # most recently started first
        return sorted(
            records,
            key=lambda item: (parse_timestamp(item.started_at) or 0.0, item.started_at),
            reverse=True,
        )


class SettingsStore:
    def __init__(self, path: Path, clock: Callable[[], str]) -> None:
        self._file = _JsonFile(path)
        self._clock = clock

    def get(self) -> Settings:
        """Return the settings row, creating the default on first read."""
        data = self._file.read(None)
        if isinstance(data, dict):
            return Settings.from_dict(data)
        settings = Settings(updated_at=self._clock())
        self._file.write(settings.to_dict())
        return settings

    def exists(self) -> bool:
        return isinstance(self._file.read(None), dict)

    def update(self, **patch: Any) -> Settings:
        existing = self.get()
        values = {
            "distance_unit": existing.distance_unit,
            "tile_source_id": existing.tile_source_id,
        }
        for key, value in patch.items():
            if key not in values:
                raise ValueError(f"Unknown settings field: {key}")
            values[key] = value
        updated = Settings(updated_at=self._clock(), **values)
        self._file.write(updated.to_dict())
        return updated

    def replace(self, settings: Settings) -> Settings:
        self._file.write(settings.to_dict())
        return settings


class ActiveRoundStore:
    """The single pointer naming the round currently in progress."""

    def __init__(self, path: Path, clock: Callable[[], str], rounds: RoundTable) -> None:
        self._file = _JsonFile(path)
        self._clock = clock
        self._rounds = rounds

    def get(self) -> Optional[str]:
        data = self._file.read(None)
        if not isinstance(data, dict):
            return None
        return data.get("roundId") or None

    def get_round(self) -> Optional[Round]:
        round_id = self.get()
        return self._rounds.get_by_id(round_id) if round_id else None

    def set(self, round_id: str) -> None:
        self._file.write({"id": ACTIVE_ROUND_KEY, "roundId": round_id, "updatedAt": self._clock()})

    def clear(self) -> None:
        self._file.remove()


class ProfileStore:
    def __init__(self, path: Path, clock: Callable[[], str]) -> None:
        self._file = _JsonFile(path)
        self._clock = clock

    def get(self) -> Profile:
        data = self._file.read(None)
        if isinstance(data, dict):
            return Profile.from_dict(data)
        return Profile.default(updated_at=self._clock())

    def save(self, profile: Profile) -> Profile:
        self._file.write(profile.to_dict())
        return profile

    def clear(self) -> None:
        self._file.remove()


class LocalRepository:
    """All local tables under one data directory."""

    def __init__(self, data_dir: Path | str | None = None, clock: Callable[[], str] | None = None) -> None:
        default_dir = Path(__file__).parent.parent / "data"
        self.data_dir = Path(data_dir or os.getenv("GREENCADDIE_DATA_DIR") or default_dir)
        self._clock = clock or utc_now_iso
        self.courses = CourseTable(self.data_dir / "courses.json", Course.from_dict)
        self.rounds = RoundTable(self.data_dir / "rounds.json", Round.from_dict)
        self.settings = SettingsStore(self.data_dir / "settings.json", self._clock)
        self.active_round = ActiveRoundStore(self.data_dir / "active_round.json", self._clock, self.rounds)
        self.profile = ProfileStore(self.data_dir / "profile.json", self._clock)

    def ensure_seed_data(self) -> None:
        """Insert the demo course into an empty store and create default settings."""
        if self.courses.count() == 0:
            logger.debug("Seeding demo course into %s", self.data_dir)
            self.courses.upsert(demo_course(self._clock()))
        if not self.settings.exists():
            self.settings.replace(Settings(updated_at=self._clock()))
