#!/usr/bin/env python3
"""
Validate flowchart JSON files (the {"nodes": [...], "edges": [...]} format).

Usage:
    python scripts/validate_flowchart.py flowchart.json        # report issues, exit 1 if any
    python scripts/validate_flowchart.py exports/              # every *.json in a directory
    python scripts/validate_flowchart.py --clean flowchart.json
        # strip control characters before parsing, as the pipeline does
"""

import json
import sys
from pathlib import Path

from reqtest.flowchart import validate_flowchart
from reqtest.json_utils import clean_json_text


def validate_file(filepath: Path, *, clean: bool = False) -> list[str]:
    """Return the issues for one file; unreadable JSON is a single issue."""
    text = filepath.read_text(encoding="utf-8")
    if clean:
        text = clean_json_text(text)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        return [f"Invalid JSON: {e}"]
    return validate_flowchart(data)


def main():
    import argparse
    parser = argparse.ArgumentParser(description="Validate flowchart JSON files")
    parser.add_argument("--clean", action="store_true",
                        help="Strip control characters before parsing")
    parser.add_argument("path", help="Single file or directory of *.json files")
    args = parser.parse_args()

    target = Path(args.path)
    if target.is_file():
        files = [target]
    elif target.is_dir():
        files = sorted(target.glob("*.json"))
    else:
        print(f"Error: {target} not found", file=sys.stderr)
        sys.exit(1)

    total_issues = 0
    files_affected = 0
    for fpath in files:
        issues = validate_file(fpath, clean=args.clean)
        if issues:
            files_affected += 1
            total_issues += len(issues)
            print(f"{fpath.name}: {len(issues)} issues")
            for issue in issues:
                print(f"  {issue}")

    print(f"\n{'='*50}")
    print(f"Files scanned: {len(files)}")
    print(f"Files with issues: {files_affected}")
    print(f"Total issues: {total_issues}")
    sys.exit(1 if total_issues else 0)


if __name__ == "__main__":
    main()
