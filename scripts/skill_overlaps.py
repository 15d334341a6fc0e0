"""List pairs of skills that overlap and need combined testing.

Two skills overlap when they modify the same file or declare a dependency
on the same package.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

from skill_patch.config import load_settings
from skill_patch.errors import ManifestError
from skill_patch.manifest import compute_overlaps, read_all_manifests


def main() -> None:
    project_root = Path.cwd()
    skills_root = Path(sys.argv[1]) if len(sys.argv) > 1 else project_root / load_settings(project_root).skills_dir

    try:
        manifests = [manifest for manifest, _ in read_all_manifests(skills_root)]
    except ManifestError as err:
        print(err, file=sys.stderr)
        sys.exit(1)

    overlaps = compute_overlaps(manifests)
    print(json.dumps([o.model_dump() for o in overlaps], indent=2))


if __name__ == "__main__":
    main()
