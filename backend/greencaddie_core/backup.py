"""Versioned export/import format for local courses and rounds.

A backup document looks like::

    {
      "schema": "greencaddie-backup",
      "version": 1,
      "exportedAt": "2026-02-21T00:00:00.000Z",
      "appVersion": "0.2.0",
      "data": {"courses": [...], "rounds": [...]}
    }

``schema`` and ``version`` must match exactly; there is no migration between
versions.  Entries sharing an id are collapsed to the most recent one.
"""

from __future__ import annotations

import datetime as dt
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Tuple, TypeVar

from .errors import BackupFormatError
from .models import Course, Round, parse_timestamp, utc_now_iso

BACKUP_SCHEMA = "greencaddie-backup"
BACKUP_VERSION = 1
BACKUP_FILENAME_PREFIX = "greencaddie-backup"

IMPORT_MODES = ("merge", "replace")

T = TypeVar("T", Course, Round)


@dataclass
class BackupPayload:
    exported_at: str
    app_version: str
    courses: List[Course] = field(default_factory=list)
    rounds: List[Round] = field(default_factory=list)
    schema: str = BACKUP_SCHEMA
    version: int = BACKUP_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema": self.schema,
            "version": self.version,
            "exportedAt": self.exported_at,
            "appVersion": self.app_version,
            "data": {
                "courses": [course.to_dict() for course in self.courses],
                "rounds": [round_.to_dict() for round_ in self.rounds],
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass
class BackupPreview:
    schema: str
    version: int
    exported_at: str
    app_version: str
    courses: int
    rounds: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema": self.schema,
            "version": self.version,
            "exportedAt": self.exported_at,
            "appVersion": self.app_version,
            "courses": self.courses,
            "rounds": self.rounds,
        }


@dataclass
class ParsedBackup:
    payload: BackupPayload
    preview: BackupPreview
    warnings: List[str] = field(default_factory=list)


# ----------------------------------------------------------------------
# Recency and de-duplication
# ----------------------------------------------------------------------


def latest_course_timestamp(course: Course) -> float:
    """``updatedAt``, else ``createdAt``, else 0 (epoch milliseconds)."""
    for value in (course.updated_at, course.created_at):
        stamp = parse_timestamp(value)
        if stamp is not None:
            return stamp
    return 0.0


def latest_round_timestamp(round_: Round) -> float:
    """``updatedAt``, else ``startedAt``, else 0 (epoch milliseconds)."""
    for value in (round_.updated_at, round_.started_at):
        stamp = parse_timestamp(value)
        if stamp is not None:
            return stamp
    return 0.0


def _dedupe_by_latest(entries: Iterable[T], timestamp: Callable[[T], float]) -> Tuple[List[T], int]:
    by_id: Dict[str, T] = {}
    duplicates = 0
    for entry in entries:
        previous = by_id.get(entry.id)
        if previous is None:
            by_id[entry.id] = entry
            continue
        duplicates += 1
        # ties go to the later entry
        if timestamp(entry) >= timestamp(previous):
            by_id[entry.id] = entry
    return list(by_id.values()), duplicates


def dedupe_courses_by_latest(courses: Iterable[Course]) -> List[Course]:
    return _dedupe_by_latest(courses, latest_course_timestamp)[0]


def dedupe_rounds_by_latest(rounds: Iterable[Round]) -> List[Round]:
    return _dedupe_by_latest(rounds, latest_round_timestamp)[0]


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------


def _is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_valid_score(entry: Any) -> bool:
    return isinstance(entry, dict) and _is_int(entry.get("holeNumber")) and _is_int(entry.get("strokes"))


def _assert_valid_date(value: Any, field_name: str) -> None:
    if parse_timestamp(value) is None:
        raise BackupFormatError(f"Invalid date in {field_name}.")


def _validate_course(entry: Any, index: int) -> Course:
    if not isinstance(entry, dict):
        raise BackupFormatError(f"Invalid course at index {index}.")
    if not _is_non_empty_str(entry.get("id")):
        raise BackupFormatError(f"Invalid course id at index {index}.")
    if not _is_non_empty_str(entry.get("name")):
        raise BackupFormatError(f"Invalid course name at index {index}.")
    if not isinstance(entry.get("holes"), list):
        raise BackupFormatError(f"Invalid course holes at index {index}.")
    if not isinstance(entry.get("tees"), list):
        raise BackupFormatError(f"Invalid course tees at index {index}.")
    _assert_valid_date(entry.get("createdAt"), f"courses[{index}].createdAt")
    _assert_valid_date(entry.get("updatedAt"), f"courses[{index}].updatedAt")
    return Course.from_dict(entry)


def _validate_round(entry: Any, index: int) -> Round:
    if not isinstance(entry, dict):
        raise BackupFormatError(f"Invalid round at index {index}.")
    if not _is_non_empty_str(entry.get("id")):
        raise BackupFormatError(f"Invalid round id at index {index}.")
    if not _is_non_empty_str(entry.get("courseId")):
        raise BackupFormatError(f"Invalid round courseId at index {index}.")
    if not isinstance(entry.get("scores"), list) or not all(_is_valid_score(score) for score in entry["scores"]):
        raise BackupFormatError(f"Invalid round scores at index {index}.")
    _assert_valid_date(entry.get("startedAt"), f"rounds[{index}].startedAt")
    for optional in ("updatedAt", "completedAt"):
        value = entry.get(optional)
        if value is not None and value != "":
            _assert_valid_date(value, f"rounds[{index}].{optional}")
    return Round.from_dict(entry)


# ----------------------------------------------------------------------
# Parse / build
# ----------------------------------------------------------------------


def parse_backup_text(text: str) -> ParsedBackup:
    """Validate a backup document and return it de-duplicated with a preview.

    Any structural problem raises :class:`BackupFormatError`; nothing is
    partially accepted.  Duplicate ids only produce warnings.
    """

    try:
        parsed = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise BackupFormatError("Backup file is not valid JSON.") from exc

    if not isinstance(parsed, dict):
        raise BackupFormatError("Backup payload is invalid.")
    if parsed.get("schema") != BACKUP_SCHEMA:
        raise BackupFormatError("Unknown backup schema.")
    version = parsed.get("version")
    if isinstance(version, bool) or version != BACKUP_VERSION:
        raise BackupFormatError("Unsupported backup version.")
    _assert_valid_date(parsed.get("exportedAt"), "exportedAt")

    data = parsed.get("data")
    if not isinstance(data, dict):
        raise BackupFormatError("Backup data payload is missing.")
    if not isinstance(data.get("courses"), list):
        raise BackupFormatError("Backup courses payload is invalid.")
    if not isinstance(data.get("rounds"), list):
        raise BackupFormatError("Backup rounds payload is invalid.")

    courses = [_validate_course(entry, index) for index, entry in enumerate(data["courses"])]
    rounds = [_validate_round(entry, index) for index, entry in enumerate(data["rounds"])]

    warnings: List[str] = []
    courses, course_duplicates = _dedupe_by_latest(courses, latest_course_timestamp)
    if course_duplicates:
        warnings.append(f"Removed {course_duplicates} duplicate course id entries from backup.")
    rounds, round_duplicates = _dedupe_by_latest(rounds, latest_round_timestamp)
    if round_duplicates:
        warnings.append(f"Removed {round_duplicates} duplicate round id entries from backup.")

    app_version = parsed.get("appVersion")
    payload = BackupPayload(
        exported_at=str(parsed["exportedAt"]),
        app_version=app_version if isinstance(app_version, str) else "",
        courses=courses,
        rounds=rounds,
    )
    preview = BackupPreview(
        schema=payload.schema,
        version=payload.version,
        exported_at=payload.exported_at,
        app_version=payload.app_version,
        courses=len(payload.courses),
        rounds=len(payload.rounds),
    )
    return ParsedBackup(payload=payload, preview=preview, warnings=warnings)


def build_backup(
    courses: Iterable[Course],
    rounds: Iterable[Round],
    app_version: str,
    exported_at: str | None = None,
) -> BackupPayload:
    return BackupPayload(
        exported_at=exported_at or utc_now_iso(),
        app_version=app_version,
        courses=list(courses),
        rounds=list(rounds),
    )


def backup_filename(now: dt.datetime | None = None) -> str:
    """``greencaddie-backup-2026-02-21T10-15-30-000Z.json`` style file name."""
    stamp = utc_now_iso(now).replace(":", "-").replace(".", "-")
    return f"{BACKUP_FILENAME_PREFIX}-{stamp}.json"
