#!/usr/bin/env python3
"""Browser-free demo test for trying out the pipeline.

Set SMOKE_FAIL_STEP to a step number (0-2) to make that step fail; the
failure is reported with a tiny placeholder screenshot.
"""

import base64
import os
import sys
import time

from runwatch.emitter import TestSession

# 1x1 transparent PNG
PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)

STEPS = ["Open page", "Fill form", "Submit"]


def main() -> int:
    fail_at = os.environ.get("SMOKE_FAIL_STEP")
    target_url = os.environ.get("TARGET_URL", "")

    try:
        with TestSession("Smoke demo", screenshot=lambda: PLACEHOLDER_PNG) as session:
            session.debug(f"Target URL: {target_url or '(none)'}")
            for index, title in enumerate(STEPS):
                with session.step(title):
                    time.sleep(0.05)
                    if fail_at is not None and int(fail_at) == index:
                        raise AssertionError(f"{title} failed on purpose")
    except AssertionError:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
