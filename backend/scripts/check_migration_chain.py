"""Static checks for the Alembic revision files under alembic/versions.

Usage:
    python scripts/check_migration_chain.py

Checks:
- every file declares a revision id, unique across the directory
- the file name starts with its revision id
- every down_revision points at an existing revision (root excepted)
- every file defines both upgrade() and downgrade()
- the chain has exactly one head
"""

from __future__ import annotations

import re
import sys
from pathlib import Path


REVISION_RE = re.compile(r'^revision\s*=\s*["\']([^"\']+)["\']', re.MULTILINE)
DOWN_RE = re.compile(r'^down_revision\s*=\s*(.+)$', re.MULTILINE)
FUNCTION_RE = re.compile(r'^def (upgrade|downgrade)\(', re.MULTILINE)


def _down_revision(text: str) -> str | None:
    match = DOWN_RE.search(text)
    if not match:
        return None
    raw = match.group(1).strip()
    if raw in {"None", ""}:
        return None
    return raw.strip("\"'")


def check(versions_dir: Path) -> tuple[list[str], list[str]]:
    revisions: dict[str, Path] = {}
    parents: dict[str, str | None] = {}
    errors: list[str] = []

    for file in sorted(versions_dir.glob("*.py")):
        text = file.read_text(encoding="utf-8")
        match = REVISION_RE.search(text)
        if not match:
            errors.append(f"{file.name}: missing revision")
            continue

        rev = match.group(1)
        if rev in revisions:
            errors.append(f"Duplicate revision id {rev} in {file.name} and {revisions[rev].name}")
        if not file.name.startswith(f"{rev}_"):
            errors.append(f"{file.name}: file name does not start with revision id {rev}")
        missing = {"upgrade", "downgrade"} - set(FUNCTION_RE.findall(text))
        if missing:
            errors.append(f"{file.name}: missing {', '.join(sorted(missing))}()")

        revisions[rev] = file
        parents[rev] = _down_revision(text)

    for rev, parent in parents.items():
        if parent is not None and parent not in revisions:
            errors.append(f"Revision {rev} references missing down_revision {parent}")

    referenced = {p for p in parents.values() if p is not None}
    heads = [r for r in revisions if r not in referenced]
    if len(heads) != 1:
        errors.append(f"Expected exactly one head revision, found {len(heads)} ({heads})")
    return heads, errors


def main() -> int:
    versions_dir = Path(__file__).resolve().parents[1] / "alembic" / "versions"
    heads, errors = check(versions_dir)

    print("Migration chain check")
    print(f"- directory: {versions_dir}")
    if errors:
        for err in errors:
            print(f"[FAIL] {err}")
        return 1

    print(f"[PASS] single head: {heads[0]}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
