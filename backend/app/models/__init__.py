from .jobs import (
    EventKind,
    JobPatch,
    JobRecord,
    JobSnapshot,
    JobStatus,
    apply_patch,
)

__all__ = ['EventKind', 'JobPatch', 'JobRecord', 'JobSnapshot', 'JobStatus', 'apply_patch']
