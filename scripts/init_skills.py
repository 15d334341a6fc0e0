"""Initialize the skill patch engine in the current project."""

from __future__ import annotations

import sys

from skill_patch.base import init_installation
from skill_patch.constants import DATA_DIR
from skill_patch.errors import SkillPatchError


def main() -> None:
    try:
        state = init_installation()
    except (OSError, SkillPatchError) as err:
        print(f"Initialization failed: {err}", file=sys.stderr)
        sys.exit(1)

    print(f"Initialized {DATA_DIR}/ (core version {state.core_version})")


if __name__ == "__main__":
    main()
