from .run_state import (
    RunState,
    RunStatus,
    RunStateCorrupt,
    RunStateManager,
    sanitize_job_id,
    STATE_FILENAME,
)

__all__ = [
    "RunState",
    "RunStatus",
    "RunStateCorrupt",
    "RunStateManager",
    "sanitize_job_id",
    "STATE_FILENAME",
]
