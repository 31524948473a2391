from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

SETTINGS_ID = "user-settings"
DEFAULT_DISTANCE_UNIT = "yards"
DEFAULT_TILE_SOURCE_ID = "esri-world-imagery"

DISTANCE_UNITS = ("yards", "meters")
PUBLISH_STATUSES = ("draft", "published")
PLAYER_ROLES = ("member", "visitor")
MEMBERSHIP_STATUSES = ("pending", "approved")


def utc_now_iso(now: dt.datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""

    value = now or dt.datetime.now(dt.UTC)
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.UTC)
    value = value.astimezone(dt.UTC)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[float]:
    """Return epoch milliseconds for an ISO-8601 string, or ``None`` if unparseable."""

    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed.timestamp() * 1000.0


def new_id() -> str:
    return str(uuid.uuid4())


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _optional_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return value
    return None


def _prune(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass
class TeeOption:
    id: str
    name: str
    course_rating: Optional[float] = None
    slope_rating: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TeeOption":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            course_rating=_optional_number(data.get("courseRating")),
            slope_rating=_optional_number(data.get("slopeRating")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _prune(
            {
                "id": self.id,
                "name": self.name,
                "courseRating": self.course_rating,
                "slopeRating": self.slope_rating,
            }
        )


@dataclass
class HoleScore:
    hole_number: int
    strokes: int
    putts: Optional[int] = None
    penalties: Optional[int] = None
    gir: Optional[bool] = None
    fir: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HoleScore":
        gir = data.get("gir")
        fir = data.get("fir")
        return cls(
            hole_number=int(data.get("holeNumber") or 0),
            strokes=int(data.get("strokes") or 0),
            putts=_optional_number(data.get("putts")),
            penalties=_optional_number(data.get("penalties")),
            gir=gir if isinstance(gir, bool) else None,
            fir=fir if isinstance(fir, bool) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return _prune(
            {
                "holeNumber": self.hole_number,
                "strokes": self.strokes,
                "putts": self.putts,
                "penalties": self.penalties,
                "gir": self.gir,
                "fir": self.fir,
            }
        )


@dataclass
class Course:
    """A golf course with its holes and tee options.

    Hole geometry (greens, hazards, fairway areas) is carried as plain dicts;
    the sync engine stores and forwards it without interpreting it.
    """

    id: str
    name: str
    holes: List[Dict[str, Any]] = field(default_factory=list)
    tees: List[TeeOption] = field(default_factory=list)
    club_name: Optional[str] = None
    location_name: Optional[str] = None
    draft_holes: Optional[List[Dict[str, Any]]] = None
    publish_status: str = "published"
    published_at: Optional[str] = None
    qa_report: Optional[Dict[str, Any]] = None
    is_demo: bool = False
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Course":
        holes = data.get("holes")
        tees = data.get("tees")
        draft_holes = data.get("draftHoles")
        qa_report = data.get("qaReport")
        publish_status = data.get("publishStatus")
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            holes=[dict(hole) for hole in holes if isinstance(hole, dict)] if isinstance(holes, list) else [],
            tees=[TeeOption.from_dict(tee) for tee in tees if isinstance(tee, dict)] if isinstance(tees, list) else [],
            club_name=_optional_str(data.get("clubName")),
            location_name=_optional_str(data.get("locationName")),
            draft_holes=(
                [dict(hole) for hole in draft_holes if isinstance(hole, dict)]
                if isinstance(draft_holes, list)
                else None
            ),
            publish_status=publish_status if publish_status in PUBLISH_STATUSES else "published",
            published_at=_optional_str(data.get("publishedAt")),
            qa_report=dict(qa_report) if isinstance(qa_report, dict) else None,
            is_demo=bool(data.get("isDemo", False)),
            created_at=str(data.get("createdAt") or ""),
            updated_at=str(data.get("updatedAt") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _prune(
            {
                "id": self.id,
                "name": self.name,
                "clubName": self.club_name,
                "locationName": self.location_name,
                "holes": [dict(hole) for hole in self.holes],
                "draftHoles": [dict(hole) for hole in self.draft_holes] if self.draft_holes is not None else None,
                "publishStatus": self.publish_status,
                "publishedAt": self.published_at,
                "qaReport": self.qa_report,
                "tees": [tee.to_dict() for tee in self.tees],
                "isDemo": self.is_demo or None,
                "createdAt": self.created_at,
                "updatedAt": self.updated_at,
            }
        )


@dataclass
class Round:
    """One played or in-progress round.

    ``scores`` is kept ordered by hole number with at most one entry per hole.
    """

    id: str
    course_id: str
    started_at: str
    scores: List[HoleScore] = field(default_factory=list)
    stableford_enabled: bool = False
    tee_id: Optional[str] = None
    handicap_at_start: Optional[float] = None
    current_hole_number: Optional[int] = None
    completed_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self) -> None:
        self.scores = _normalise_scores(self.scores)

    @property
    def total_strokes(self) -> int:
        return sum(score.strokes for score in self.scores)

    @property
    def is_completed(self) -> bool:
        return bool(self.completed_at)

    def set_score(self, hole_number: int, strokes: int, **extra: Any) -> HoleScore:
        score = HoleScore(hole_number=hole_number, strokes=strokes, **extra)
        self.scores = _normalise_scores([*self.scores, score])
        return score

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Round":
        scores = data.get("scores")
        current_hole = data.get("currentHoleNumber")
        return cls(
            id=str(data.get("id") or ""),
            course_id=str(data.get("courseId") or ""),
            tee_id=_optional_str(data.get("teeId")),
            handicap_at_start=_optional_number(data.get("handicapAtStart")),
            current_hole_number=current_hole if isinstance(current_hole, int) and not isinstance(current_hole, bool) else None,
            started_at=str(data.get("startedAt") or ""),
            completed_at=data.get("completedAt") or None,
            updated_at=data.get("updatedAt") or None,
            scores=[HoleScore.from_dict(item) for item in scores if isinstance(item, dict)] if isinstance(scores, list) else [],
            stableford_enabled=bool(data.get("stablefordEnabled", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _prune(
            {
                "id": self.id,
                "courseId": self.course_id,
                "teeId": self.tee_id,
                "handicapAtStart": self.handicap_at_start,
                "currentHoleNumber": self.current_hole_number,
                "startedAt": self.started_at,
                "completedAt": self.completed_at,
                "updatedAt": self.updated_at,
                "scores": [score.to_dict() for score in self.scores],
                "stablefordEnabled": self.stableford_enabled,
            }
        )


def _normalise_scores(scores: List[HoleScore]) -> List[HoleScore]:
    by_hole: Dict[int, HoleScore] = {}
    for score in scores:
        by_hole[score.hole_number] = score
    return [by_hole[number] for number in sorted(by_hole)]


@dataclass
class Settings:
    distance_unit: str = DEFAULT_DISTANCE_UNIT
    tile_source_id: str = DEFAULT_TILE_SOURCE_ID
    updated_at: str = ""

    id: str = field(default=SETTINGS_ID, init=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        unit = data.get("distanceUnit")
        return cls(
            distance_unit=unit if unit in DISTANCE_UNITS else DEFAULT_DISTANCE_UNIT,
            tile_source_id=str(data.get("tileSourceId") or DEFAULT_TILE_SOURCE_ID),
            updated_at=str(data.get("updatedAt") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": SETTINGS_ID,
            "distanceUnit": self.distance_unit,
            "tileSourceId": self.tile_source_id,
            "updatedAt": self.updated_at,
        }


@dataclass
class Profile:
    uid: str = ""
    email: str = ""
    display_name: str = "Guest Player"
    role: str = "member"
    membership_status: str = "pending"
    handicap_index: str = ""
    home_course: str = ""
    onboarding_completed_at: Optional[str] = None
    updated_at: str = ""

    @classmethod
    def default(cls, uid: str = "", email: str = "", updated_at: str = "") -> "Profile":
        local_part = email.split("@")[0] if email else ""
        return cls(uid=uid, email=email, display_name=local_part or "Guest Player", updated_at=updated_at)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        role = data.get("role")
        status = data.get("membershipStatus")
        return cls(
            uid=str(data.get("uid") or ""),
            email=str(data.get("email") or ""),
            display_name=str(data.get("displayName") or "Guest Player"),
            role=role if role in PLAYER_ROLES else "member",
            membership_status=status if status in MEMBERSHIP_STATUSES else "pending",
            handicap_index=str(data.get("handicapIndex") or ""),
            home_course=str(data.get("homeCourse") or ""),
            onboarding_completed_at=data.get("onboardingCompletedAt") or None,
            updated_at=str(data.get("updatedAt") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _prune(
            {
                "uid": self.uid,
                "email": self.email,
                "displayName": self.display_name,
                "role": self.role,
                "membershipStatus": self.membership_status,
                "handicapIndex": self.handicap_index,
                "homeCourse": self.home_course,
                "onboardingCompletedAt": self.onboarding_completed_at,
                "updatedAt": self.updated_at,
            }
        )


@dataclass
class LeaderboardEntry:
    uid: str
    display_name: str
    role: str
    rounds: int
    best_score: float
    average_score: float
    position: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeaderboardEntry":
        return cls(
            uid=str(data.get("uid") or ""),
            display_name=str(data.get("displayName") or ""),
            role=str(data.get("role") or "member"),
            rounds=int(data.get("rounds") or 0),
            best_score=data.get("bestScore") or 0,
            average_score=data.get("averageScore") or 0,
            position=int(data.get("position") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "displayName": self.display_name,
            "role": self.role,
            "rounds": self.rounds,
            "bestScore": self.best_score,
            "averageScore": self.average_score,
            "position": self.position,
        }


@dataclass
class BootstrapSnapshot:
    """Full account state as returned by the remote service."""

    uid: str
    email: str
    profile: Profile
    settings: Settings
    courses: List[Course] = field(default_factory=list)
    rounds: List[Round] = field(default_factory=list)
    active_round_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BootstrapSnapshot":
        uid = str(data.get("uid") or "")
        email = str(data.get("email") or "")
        profile = data.get("profile")
        settings = data.get("settings")
        courses = data.get("courses")
        rounds = data.get("rounds")
        return cls(
            uid=uid,
            email=email,
            profile=Profile.from_dict(profile) if isinstance(profile, dict) else Profile.default(uid, email),
            settings=Settings.from_dict(settings) if isinstance(settings, dict) else Settings(),
            courses=[Course.from_dict(item) for item in courses if isinstance(item, dict)] if isinstance(courses, list) else [],
            rounds=[Round.from_dict(item) for item in rounds if isinstance(item, dict)] if isinstance(rounds, list) else [],
            active_round_id=data.get("activeRoundId") or None,
        )
