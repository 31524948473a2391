"""Sync coordinator: the one stateful owner of local and remote writes.

Every user intent follows the same steps:

1. stamp ``updatedAt`` on the record being written;
2. write it to the :class:`LocalRepository` (this never waits on the network);
3. without an account session, stop; the change is ``local_only``;
4. otherwise mark the state ``syncing`` and make the matching remote call;
5. on success mark it ``synced``; on a :class:`NetworkError` fall back to
   ``local_only`` and keep the local write;
6. re-read the derived view state from the repository.

A round upsert the server rejects as stale is not overwritten locally.  The
local edit is forked into a new round (new id, fresh timestamps) and the
account snapshot is pulled again, so both versions survive.

Intents are serialised with a re-entrant lock: one intent, including its
remote calls, runs to completion before the next starts.
"""

from __future__ import annotations

import enum
import logging
import os
import threading
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, List, Optional, Tuple, Union

from .backup import IMPORT_MODES, BackupPayload, ParsedBackup, build_backup, parse_backup_text
from .errors import NetworkError
from .models import (
    DISTANCE_UNITS,
    MEMBERSHIP_STATUSES,
    PLAYER_ROLES,
    Course,
    LeaderboardEntry,
    Profile,
    Round,
    new_id,
    parse_timestamp,
    utc_now_iso,
)
from .remote import Credential, RemoteSyncClient, RoundConflict
from .repository import LocalRepository

logger = logging.getLogger(__name__)

DEFAULT_APP_VERSION = "0.2.0"
GUEST_UID = "local-user"
GUEST_DISPLAY_NAME = "Guest Player"
CONFLICT_MESSAGE = "Round conflict detected. Preserved local edit as a new round."
NO_SESSION_REASON = "Not signed in; saved locally."


class SyncState(str, enum.Enum):
    LOCAL_ONLY = "local_only"
    SYNCING = "syncing"
    SYNCED = "synced"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Synced:
    message: str


@dataclass(frozen=True)
class LocalOnly:
    reason: str


@dataclass(frozen=True)
class Conflict:
    forked_id: str
    message: str = CONFLICT_MESSAGE


SyncOutcome = Union[Synced, LocalOnly, Conflict]


@dataclass
class CoordinatorState:
    """View state derived from the local repository plus sync status."""

    loading: bool = True
    courses: List[Course] = field(default_factory=list)
    rounds: List[Round] = field(default_factory=list)
    active_round: Optional[Round] = None
    unit: str = "yards"
    tile_source_id: str = "esri-world-imagery"
    profile: Optional[Profile] = None
    leaderboard: List[LeaderboardEntry] = field(default_factory=list)
    auth_uid: Optional[str] = None
    auth_email: Optional[str] = None
    sync_state: SyncState = SyncState.LOCAL_ONLY
    sync_message: Optional[str] = None


RemoteFactory = Callable[[Optional[Credential]], RemoteSyncClient]


def _default_remote_factory(credential: Optional[Credential]) -> RemoteSyncClient:
    return RemoteSyncClient(credential=credential)


class SyncCoordinator:
    def __init__(
        self,
        repository: LocalRepository,
        remote_factory: RemoteFactory | None = None,
        *,
        app_version: str | None = None,
        clock: Callable[[], str] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.repository = repository
        self.app_version = app_version or os.getenv("GREENCADDIE_APP_VERSION") or DEFAULT_APP_VERSION
        self.state = CoordinatorState()
        self._remote_factory = remote_factory or _default_remote_factory
        self._remote: Optional[RemoteSyncClient] = None
        self._clock = clock or utc_now_iso
        self._new_id = id_factory or new_id
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> None:
        with self._lock:
            self.repository.ensure_seed_data()
            self.refresh()
            self.state.loading = False

    def close(self) -> None:
        with self._lock:
            self._remote = None
            self.state.loading = True

    @property
    def signed_in(self) -> bool:
        return bool(self.state.auth_uid) and self._remote is not None

    def _session(self) -> Tuple[RemoteSyncClient, str]:
        if self._remote is None or not self.state.auth_uid:
            raise RuntimeError("No account session")
        return self._remote, self.state.auth_uid

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def set_auth_session(self, uid: str | None, email: str | None = None, id_token: str = "") -> SyncOutcome:
        """Sign in (pull the account and leaderboard) or sign out (wipe local user data)."""
        with self._lock:
            self.state.loading = True
            self.state.auth_uid = uid or None
            self.state.auth_email = email or None
            self.state.sync_message = None

            if uid:
                self._remote = self._remote_factory(Credential(uid=uid, id_token=id_token))
                self._set_status(SyncState.SYNCING, None)
                try:
                    self._pull_remote()
                    self._load_leaderboard("week", "all", "combined")
                except NetworkError as exc:
                    logger.warning("Initial sync for %s failed (%s); working locally", uid, exc)
                    outcome: SyncOutcome = LocalOnly("Sync failed. Working locally.")
                    self._set_status(SyncState.LOCAL_ONLY, outcome.reason)
                else:
                    outcome = Synced("Cloud sync complete.")
                    self._set_status(SyncState.SYNCED, outcome.message)
            else:
                self._remote = None
                self.repository.rounds.clear()
                self.repository.active_round.clear()
                self.repository.profile.clear()
                self.repository.ensure_seed_data()
                self.state.leaderboard = []
                self._set_status(SyncState.LOCAL_ONLY, None)
                outcome = LocalOnly("Signed out.")

            self.refresh()
            self.state.loading = False
            return outcome

    def sync_from_remote(self) -> SyncOutcome:
        """Merge the account snapshot into the local tables."""
        with self._lock:
            if not self.signed_in:
                return LocalOnly(NO_SESSION_REASON)
            self._set_status(SyncState.SYNCING, "Syncing account...")
            try:
                self._pull_remote()
            except NetworkError as exc:
                logger.warning("Account pull failed (%s); keeping local copy", exc)
                self._set_status(SyncState.LOCAL_ONLY, "Sync failed. Working locally.")
                outcome: SyncOutcome = LocalOnly("Sync failed. Working locally.")
            else:
                self._set_status(SyncState.SYNCED, "Cloud sync complete.")
                outcome = Synced("Cloud sync complete.")
            self.refresh()
            return outcome

    def _pull_remote(self) -> None:
        remote, uid = self._session()
        snapshot = remote.bootstrap(uid, self.state.auth_email or "")
        repo = self.repository
        repo.courses.upsert_many(snapshot.courses)
        repo.rounds.upsert_many(snapshot.rounds)
        repo.settings.replace(snapshot.settings)
        repo.profile.save(snapshot.profile)
        if snapshot.active_round_id:
            repo.active_round.set(snapshot.active_round_id)
        else:
            repo.active_round.clear()
        logger.debug(
            "Merged %d courses and %d rounds from account %s",
            len(snapshot.courses),
            len(snapshot.rounds),
            snapshot.uid,
        )

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    def refresh(self) -> CoordinatorState:
        """Re-read every view field from the local repository."""
        with self._lock:
            repo = self.repository
            settings = repo.settings.get()
            self.state.courses = repo.courses.list()
            self.state.rounds = repo.rounds.list()
            self.state.active_round = repo.active_round.get_round()
            self.state.unit = settings.distance_unit
            self.state.tile_source_id = settings.tile_source_id
            self.state.profile = repo.profile.get()
            return self.state

    def refresh_leaderboard(
        self,
        timeframe: str = "week",
        course_id: str = "all",
        role: str = "combined",
    ) -> List[LeaderboardEntry]:
        with self._lock:
            try:
                self._load_leaderboard(timeframe, course_id, role)
            except NetworkError as exc:
                logger.warning("Leaderboard refresh failed (%s); keeping previous entries", exc)
            return self.state.leaderboard

    def _load_leaderboard(self, timeframe: str, course_id: str, role: str) -> None:
        if self.signed_in:
            remote, _ = self._session()
            self.state.leaderboard = remote.leaderboard(timeframe, course_id, role)
            return
        self.state.leaderboard = self._guest_leaderboard()

    def _guest_leaderboard(self) -> List[LeaderboardEntry]:
        rounds = self.repository.rounds.list()
        if not rounds:
            return []
        totals = [round_.total_strokes for round_ in rounds]
        return [
            LeaderboardEntry(
                uid=GUEST_UID,
                display_name=GUEST_DISPLAY_NAME,
                role="member",
                rounds=len(rounds),
                best_score=min(totals),
                average_score=sum(totals) / len(totals),
                position=1,
            )
        ]

    # ------------------------------------------------------------------
    # Courses
    # ------------------------------------------------------------------

    def save_course(self, course: Course) -> SyncOutcome:
        if not course.id:
            raise ValueError("Course id is required")
        with self._lock:
            existing = self.repository.courses.get_by_id(course.id)
            stamp = self._clock()
            if existing is not None and (parse_timestamp(existing.updated_at) or 0.0) > (parse_timestamp(stamp) or 0.0):
                # never move updatedAt backwards
                stamp = existing.updated_at
            created_at = course.created_at or (existing.created_at if existing else "") or stamp
            next_course = replace(course, created_at=created_at, updated_at=stamp)
            self.repository.courses.upsert(next_course)

            outcome = self._sync(
                lambda remote, uid: remote.upsert_course(uid, next_course),
                syncing="Syncing course changes...",
                synced="Course synced.",
                failed="Course saved locally; cloud sync failed.",
            )
            self.refresh()
            return outcome

    def delete_course(self, course_id: str) -> SyncOutcome:
        with self._lock:
            self.repository.courses.remove(course_id)
            outcome = self._sync(
                lambda remote, uid: remote.delete_course(uid, course_id),
                syncing="Syncing course deletion...",
                synced="Course deletion synced.",
                failed="Course deleted locally; cloud sync failed.",
            )
            self.refresh()
            return outcome

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    def start_round(self, course_id: str, tee_id: str | None = None, stableford_enabled: bool = False) -> Round:
        """Create a new round on ``course_id`` and make it the active round."""
        stamp = self._clock()
        round_ = Round(
            id=self._new_id(),
            course_id=course_id,
            tee_id=tee_id,
            started_at=stamp,
            current_hole_number=1,
            stableford_enabled=stableford_enabled,
        )
        self.save_round(round_, set_active=True)
        return self.repository.rounds.get_by_id(round_.id) or round_

    def save_round(self, round_: Round, set_active: bool = True) -> SyncOutcome:
        with self._lock:
            next_round = replace(round_, updated_at=self._clock())
            self.repository.rounds.upsert(next_round)
            if set_active:
                self.repository.active_round.set(next_round.id)

            if not self.signed_in:
                outcome: SyncOutcome = LocalOnly(NO_SESSION_REASON)
            else:
                outcome = self._sync_round(next_round, set_active=set_active)
            self.refresh()
            return outcome

    def _sync_round(self, round_: Round, set_active: bool, reconcile: bool = True) -> SyncOutcome:
        remote, uid = self._session()
        self._set_status(SyncState.SYNCING, "Syncing round...")
        try:
            result = remote.upsert_round(uid, round_)
            if isinstance(result, RoundConflict):
                return self._fork_round(round_, result, reconcile=reconcile)
            if set_active:
                remote.set_active_round(uid, round_.id)
        except NetworkError as exc:
            message = "Round saved locally; cloud sync failed."
            logger.warning("Round %s sync failed (%s); keeping local copy", round_.id, exc)
            self._set_status(SyncState.LOCAL_ONLY, message)
            return LocalOnly(message)
        self._set_status(SyncState.SYNCED, "Round synced.")
        return Synced("Round synced.")

    def _fork_round(self, round_: Round, conflict: RoundConflict, reconcile: bool = True) -> Conflict:
        remote, uid = self._session()
        stamp = self._clock()
        fork = replace(round_, id=self._new_id(), started_at=stamp, updated_at=stamp)
        self.repository.rounds.upsert(fork)
        logger.warning(
            "Round %s conflicts with server copy (%s); preserved local edit as round %s",
            round_.id,
            conflict.message,
            fork.id,
        )
        try:
            remote.upsert_round(uid, fork)
            if reconcile:
                self._pull_remote()
        except NetworkError as exc:
            logger.warning("Could not push forked round %s (%s); kept locally", fork.id, exc)
        self._set_status(SyncState.CONFLICT, CONFLICT_MESSAGE)
        return Conflict(forked_id=fork.id)

    def delete_round(self, round_id: str) -> SyncOutcome:
        with self._lock:
            self.repository.rounds.remove(round_id)
            outcome = self._sync(
                lambda remote, uid: remote.delete_round(uid, round_id),
                syncing="Syncing round deletion...",
                synced="Round deletion synced.",
                failed="Round deleted locally; cloud sync failed.",
            )
            self.refresh()
            self.refresh_leaderboard()
            return outcome

    def complete_round(self, round_: Round) -> SyncOutcome:
        with self._lock:
            stamp = self._clock()
            completed = replace(round_, completed_at=stamp, updated_at=stamp)
            self.repository.rounds.upsert(completed)
            self.repository.active_round.clear()

            def push(remote: RemoteSyncClient, uid: str) -> None:
                result = remote.upsert_round(uid, completed)
                if isinstance(result, RoundConflict):
                    raise NetworkError(result.message, status_code=409)
                remote.set_active_round(uid, None)

            outcome = self._sync(
                push,
                syncing="Syncing completed round...",
                synced="Completed round synced.",
                failed="Round completed locally; cloud sync failed.",
            )
            self.refresh()
            self.refresh_leaderboard()
            return outcome

    def set_active_round_id(self, round_id: str | None) -> SyncOutcome:
        with self._lock:
            if round_id:
                self.repository.active_round.set(round_id)
            else:
                self.repository.active_round.clear()
            outcome = self._sync(
                lambda remote, uid: remote.set_active_round(uid, round_id),
                syncing=None,
                synced="Active round synced.",
                failed="Active round updated locally; cloud sync failed.",
            )
            self.refresh()
            self.refresh_leaderboard()
            return outcome

    # ------------------------------------------------------------------
    # Settings and profile
    # ------------------------------------------------------------------

    def set_unit(self, unit: str) -> SyncOutcome:
        if unit not in DISTANCE_UNITS:
            raise ValueError(f"Unknown distance unit '{unit}'")
        with self._lock:
            settings = self.repository.settings.update(distance_unit=unit)
            outcome = self._sync(
                lambda remote, uid: remote.save_settings(uid, settings),
                syncing=None,
                synced="Settings synced.",
                failed="Settings saved locally; cloud sync failed.",
            )
            self.refresh()
            return outcome

    def set_tile_source(self, tile_source_id: str) -> SyncOutcome:
        if not tile_source_id:
            raise ValueError("Tile source id is required")
        with self._lock:
            settings = self.repository.settings.update(tile_source_id=tile_source_id)
            outcome = self._sync(
                lambda remote, uid: remote.save_settings(uid, settings),
                syncing=None,
                synced="Map settings synced.",
                failed="Map settings saved locally; cloud sync failed.",
            )
            self.refresh()
            return outcome

    def save_profile(self, **patch: Any) -> SyncOutcome:
        allowed = {item.name for item in fields(Profile)} - {"uid", "email", "updated_at"}
        unknown = set(patch) - allowed
        if unknown:
            raise ValueError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        if "role" in patch and patch["role"] not in PLAYER_ROLES:
            raise ValueError(f"Unknown player role '{patch['role']}'")
        if "membership_status" in patch and patch["membership_status"] not in MEMBERSHIP_STATUSES:
            raise ValueError(f"Unknown membership status '{patch['membership_status']}'")
        with self._lock:
            existing = self.repository.profile.get()
            profile = replace(
                existing,
                **patch,
                uid=self.state.auth_uid or existing.uid,
                email=self.state.auth_email or existing.email,
                updated_at=self._clock(),
            )
            self.repository.profile.save(profile)
            outcome = self._sync(
                lambda remote, uid: remote.save_profile(uid, profile),
                syncing=None,
                synced="Profile synced.",
                failed="Profile saved locally; cloud sync failed.",
            )
            self.refresh()
            self.refresh_leaderboard()
            return outcome

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def export_backup(self, exported_at: str | None = None) -> BackupPayload:
        with self._lock:
            return build_backup(
                self.repository.courses.list(),
                self.repository.rounds.list(),
                app_version=self.app_version,
                exported_at=exported_at or self._clock(),
            )

    def preview_backup(self, text: str) -> ParsedBackup:
        return parse_backup_text(text)

    def import_backup(self, parsed: ParsedBackup, mode: str = "merge") -> SyncOutcome:
        """Apply a parsed backup locally, then push it when signed in.

        ``merge`` overwrites records sharing an id; ``replace`` clears the
        course and round tables first.
        """
        if mode not in IMPORT_MODES:
            raise ValueError(f"Unknown import mode '{mode}'")
        with self._lock:
            payload = parsed.payload
            if mode == "replace":
                self.repository.courses.clear()
                self.repository.rounds.clear()
            self.repository.courses.upsert_many(payload.courses)
            self.repository.rounds.upsert_many(payload.rounds)
            logger.info(
                "Imported %d courses and %d rounds (%s)",
                len(payload.courses),
                len(payload.rounds),
                mode,
            )

            if not self.signed_in:
                outcome: SyncOutcome = LocalOnly(NO_SESSION_REASON)
            else:
                outcome = self._push_imported(payload)
            self.refresh()
            return outcome

    def _push_imported(self, payload: BackupPayload) -> SyncOutcome:
        remote, uid = self._session()
        self._set_status(SyncState.SYNCING, "Syncing imported backup...")
        forked: Optional[Conflict] = None
        try:
            for course in payload.courses:
                remote.upsert_course(uid, course)
        except NetworkError as exc:
            message = "Backup imported locally; cloud sync failed."
            logger.warning("Imported course sync failed (%s); keeping local copy", exc)
            self._set_status(SyncState.LOCAL_ONLY, message)
            return LocalOnly(message)

        for round_ in payload.rounds:
            outcome = self._sync_round(round_, set_active=False, reconcile=False)
            if isinstance(outcome, LocalOnly):
                message = "Backup imported locally; cloud sync failed."
                self._set_status(SyncState.LOCAL_ONLY, message)
                return LocalOnly(message)
            if isinstance(outcome, Conflict):
                forked = outcome

        if forked is not None:
            try:
                self._pull_remote()
            except NetworkError as exc:
                logger.warning("Account pull after import failed (%s)", exc)
            self._set_status(SyncState.CONFLICT, CONFLICT_MESSAGE)
            return forked
        self._set_status(SyncState.SYNCED, "Imported backup synced.")
        return Synced("Imported backup synced.")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _sync(
        self,
        call: Callable[[RemoteSyncClient, str], Any],
        *,
        syncing: str | None,
        synced: str,
        failed: str,
    ) -> SyncOutcome:
        if not self.signed_in:
            return LocalOnly(NO_SESSION_REASON)
        remote, uid = self._session()
        self._set_status(SyncState.SYNCING, syncing)
        try:
            call(remote, uid)
        except NetworkError as exc:
            logger.warning("%s (%s)", failed, exc)
            self._set_status(SyncState.LOCAL_ONLY, failed)
            return LocalOnly(failed)
        self._set_status(SyncState.SYNCED, synced)
        return Synced(synced)

    def _set_status(self, sync_state: SyncState, message: str | None) -> None:
        self.state.sync_state = sync_state
        if message is not None or sync_state is not SyncState.SYNCING:
            self.state.sync_message = message
