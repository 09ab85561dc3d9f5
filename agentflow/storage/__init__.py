"""
Storage package - In-memory storage for flow runs.
"""

from agentflow.storage.memory import (
    RunStorage,
    StoredRun,
    run_storage,
)

__all__ = [
    "RunStorage",
    "StoredRun",
    "run_storage",
]
