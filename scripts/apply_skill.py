"""Apply a skill from a skill directory."""

from __future__ import annotations

import json
import sys

from skill_patch.apply import abort_apply, apply_skill, complete_apply


def main() -> None:
    args = sys.argv[1:]
    if args[:1] == ["--abort"]:
        aborted = abort_apply()
        print("Pending apply rolled back." if aborted else "Nothing to abort.")
        return

    complete = args[:1] == ["--complete"]
    if complete:
        args = args[1:]

    if not args:
        print(
            "Usage: python scripts/apply_skill.py [--complete] <skill-dir>\n"
            "       python scripts/apply_skill.py --abort",
            file=sys.stderr,
        )
        sys.exit(1)

    result = complete_apply(args[0]) if complete else apply_skill(args[0])
    print(json.dumps(result.model_dump(), indent=2))

    if not result.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
