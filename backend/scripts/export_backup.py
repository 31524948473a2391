"""CLI helper for writing the local courses and rounds to a backup file."""

from __future__ import annotations

import sys
from pathlib import Path

from greencaddie_core import LocalRepository, StorageError, SyncCoordinator, backup_filename


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    target_dir = Path(args[0]) if args else Path.cwd()

    coordinator = SyncCoordinator(LocalRepository())
    try:
        coordinator.init()
        payload = coordinator.export_backup()
        target = target_dir / backup_filename()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(payload.to_json(), encoding="utf-8")
    except (StorageError, OSError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        coordinator.close()

    print(f"Exported {len(payload.courses)} courses and {len(payload.rounds)} rounds to {target}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
