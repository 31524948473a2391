"""Offline-first storage and sync engine for the GreenCaddie golf tracker."""

from .backup import ParsedBackup, backup_filename, build_backup, parse_backup_text
from .coordinator import Conflict, LocalOnly, SyncCoordinator, SyncState, Synced
from .errors import BackupFormatError, NetworkError, StorageError
from .models import Course, HoleScore, LeaderboardEntry, Profile, Round, Settings, TeeOption
from .remote import Credential, RemoteSyncClient, RoundConflict, RoundSaved
from .repository import LocalRepository

__version__ = "0.2.0"

__all__ = [
    "BackupFormatError",
    "Conflict",
    "Course",
    "Credential",
    "HoleScore",
    "LeaderboardEntry",
    "LocalOnly",
    "LocalRepository",
    "NetworkError",
    "ParsedBackup",
    "Profile",
    "RemoteSyncClient",
    "Round",
    "RoundConflict",
    "RoundSaved",
    "Settings",
    "StorageError",
    "SyncCoordinator",
    "SyncState",
    "Synced",
    "TeeOption",
    "backup_filename",
    "build_backup",
    "parse_backup_text",
]
