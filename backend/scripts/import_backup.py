"""CLI helper for loading a backup file into the local store.

Usage: ``python scripts/import_backup.py <file.json> [merge|replace]``
"""

from __future__ import annotations

import sys
from pathlib import Path

from greencaddie_core import BackupFormatError, LocalRepository, StorageError, SyncCoordinator


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print("usage: import_backup.py <file.json> [merge|replace]", file=sys.stderr)
        return 2
    source = Path(args[0])
    mode = args[1] if len(args) > 1 else "merge"

    coordinator = SyncCoordinator(LocalRepository())
    try:
        coordinator.init()
        parsed = coordinator.preview_backup(source.read_text(encoding="utf-8"))
        coordinator.import_backup(parsed, mode=mode)
    except (BackupFormatError, StorageError, OSError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        coordinator.close()

    preview = parsed.preview
    print(f"Imported {preview.courses} courses and {preview.rounds} rounds ({mode}) exported {preview.exported_at}")
    for warning in parsed.warnings:
        print(f"  - {warning}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
