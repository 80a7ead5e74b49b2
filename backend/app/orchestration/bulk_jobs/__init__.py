"""
bulk 标签任务（find/replace、add、remove、cleanup、revert）的状态机与任务入口。
"""

from .state import JobState, OperationKind, Step, Transition, LogActivity, RecordUsage
from .runner import StepOutcome, run_step
from .tasks import advance_bulk_job, enqueue, run_job_inline, start_bulk_job, start_cleanup_job
from .revert import BackupNotFoundError, revert_job
from .dry_run import dry_run_tag_operation


__all__ = [
    "JobState", "OperationKind", "Step", "Transition", "LogActivity", "RecordUsage",
    "StepOutcome", "run_step",
    "advance_bulk_job", "enqueue", "run_job_inline", "start_bulk_job", "start_cleanup_job",
    "BackupNotFoundError", "revert_job",
    "dry_run_tag_operation",
]
