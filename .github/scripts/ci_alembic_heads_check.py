"""CI gate: the Alembic migration graph must be a single linear chain.

A new migration with down_revision = None creates a second root and makes
upgrade ordering non-deterministic. New migrations chain off the current head.

Usage:
  python .github/scripts/ci_alembic_heads_check.py
"""
from __future__ import annotations

import sys
from pathlib import Path

# Alembic needs the api directory on sys.path and the alembic.ini location.
api_root = Path(__file__).resolve().parents[2] / "apps" / "api"
sys.path.insert(0, str(api_root))

from alembic.config import Config
from alembic.script import ScriptDirectory


def main() -> int:
    cfg = Config(str(api_root / "alembic.ini"))
    cfg.set_main_option("script_location", str(api_root / "alembic"))

    script = ScriptDirectory.from_config(cfg)
    heads = sorted(script.get_heads())
    revisions = list(script.walk_revisions())
    roots = sorted(r.revision for r in revisions if r.down_revision is None)

    if len(heads) != 1:
        print("MIGRATION HEAD CHECK FAILED")
        print(f"  Expected a single head, found: {heads}")
        print("  Fix: add a merge migration or re-parent the new revision.")
        return 1

    if len(roots) != 1:
        print("MIGRATION ROOT CHECK FAILED")
        print(f"  Expected a single root, found: {roots}")
        print("  Fix: new migrations must chain off the head, not use down_revision = None.")
        return 1

    print(f"Migration integrity check: OK (head {heads[0]}, {len(revisions)} revisions)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
