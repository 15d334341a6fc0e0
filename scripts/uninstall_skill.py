"""Uninstall a previously applied skill."""

from __future__ import annotations

import sys

from skill_patch.uninstall import uninstall_skill


def main() -> None:
    args = sys.argv[1:]
    confirm = "--yes" in args
    names = [a for a in args if a != "--yes"]
    if not names:
        print("Usage: python scripts/uninstall_skill.py [--yes] <skill-name>", file=sys.stderr)
        sys.exit(1)

    skill_name = names[0]

    print(f"Uninstalling skill: {skill_name}")
    result = uninstall_skill(skill_name, confirm_custom_patch=confirm)

    if result.custom_patch_warning:
        print(f"\nWarning: {result.custom_patch_warning}", file=sys.stderr)
        print("To proceed, re-run with --yes.", file=sys.stderr)
        sys.exit(1)

    if not result.success:
        print(f"\nFailed ({result.failure}): {result.error}", file=sys.stderr)
        if result.merge_conflicts:
            print(f"Conflicted files: {', '.join(result.merge_conflicts)}", file=sys.stderr)
        sys.exit(1)

    print(f"\nSuccessfully uninstalled: {skill_name}")
    if result.test_results:
        print("Test results:")
        for name, passed in result.test_results.items():
            print(f"  {name}: {'PASS' if passed else 'FAIL'}")


if __name__ == "__main__":
    try:
        main()
    except Exception as err:
        print(err, file=sys.stderr)
        sys.exit(1)
