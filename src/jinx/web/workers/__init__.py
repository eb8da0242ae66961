"""
In-memory registry for dream jobs.

`GEN_QUEUE` serializes requests to the Stable Diffusion web UI, which only
renders one image at a time. `JOBS` keeps a JSON friendly record per
submitted job so the status endpoints never touch the queue internals.
"""

from typing import Any

from jinx.core.queue import Queue

GEN_QUEUE = Queue()
JOBS: dict[str, dict[str, Any]] = {}

__all__ = ["GEN_QUEUE", "JOBS"]
