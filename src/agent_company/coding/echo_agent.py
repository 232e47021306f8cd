"""Local deterministic coding agent for CLI integration tests and demos.

Prints ``APPROVED`` for any prompt, ``NEEDS_REVISION`` when the prompt
contains ``REVISE_TASK`` and exits with status 1 when it contains
``FAIL_TASK``.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

FAIL_MARKER = "FAIL_TASK"
REVISE_MARKER = "REVISE_TASK"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser()
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--prompt")
    group.add_argument("--prompt-file")
    args = parser.parse_args(argv)

    prompt = args.prompt if args.prompt is not None else Path(args.prompt_file).read_text("utf-8")
    if FAIL_MARKER in prompt:
        sys.stderr.write(f"echo_agent: {FAIL_MARKER} requested\n")
        return 1
    if REVISE_MARKER in prompt:
        sys.stdout.write("NEEDS_REVISION: requested by prompt\n")
        return 0
    sys.stdout.write("APPROVED\n")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
