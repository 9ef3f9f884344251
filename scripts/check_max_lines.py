#!/usr/bin/env python3
"""Fail when a module in the rag-engine tree grows past the per-file line limit.

Usage: scripts/check_max_lines.py [--max N] [ROOT ...]   (default roots: src scripts)
"""

import argparse
import sys
from pathlib import Path

DEFAULT_MAX_LINES = 250
DEFAULT_ROOTS = ("src", "scripts")


def count_lines(path: Path) -> int | None:
    try:
        return len(path.read_text(encoding="utf-8").splitlines())
    except (OSError, UnicodeDecodeError):
        return None


def oversized(repo_root: Path, roots: list[str], max_lines: int) -> list[tuple[Path, int]]:
    found = []
    for root in roots:
        base = repo_root / root
        for path in sorted(base.rglob("*.py")) if base.is_dir() else []:
            if "__pycache__" in path.parts:
                continue
            count = count_lines(path)
            if count is not None and count > max_lines:
                found.append((path.relative_to(repo_root), count))
    return found


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Check per-file line counts")
    parser.add_argument("roots", nargs="*", default=list(DEFAULT_ROOTS), help="Directories to scan")
    parser.add_argument("--max", type=int, default=DEFAULT_MAX_LINES, dest="max_lines", help="Line limit")
    args = parser.parse_args(argv)

    repo_root = Path(__file__).resolve().parent.parent
    found = oversized(repo_root, args.roots, args.max_lines)
    if not found:
        print(f"OK: no file over {args.max_lines} lines in {', '.join(args.roots)}")
        return 0
    print(f"{len(found)} file(s) over {args.max_lines} lines:", file=sys.stderr)
    for path, count in sorted(found, key=lambda x: -x[1]):
        print(f"  {path}: {count} (+{count - args.max_lines})", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
