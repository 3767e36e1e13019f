"""Patch transaction engine."""

from .context import PatchingContext, PatchingResult, UndoReport, build_rollback_patch
from .loader import PatchContentLoader
from .policy import ContentVerificationPolicy
from .tasks import MISC_TASK, MODULE_TASK, TaskBehavior, execute_task, select_task
from .tool import AppliedPatch, PatchTool, unpacked_patch

__all__ = [
    "AppliedPatch",
    "ContentVerificationPolicy",
    "MISC_TASK",
    "MODULE_TASK",
    "PatchContentLoader",
    "PatchTool",
    "PatchingContext",
    "PatchingResult",
    "TaskBehavior",
    "UndoReport",
    "build_rollback_patch",
    "execute_task",
    "select_task",
    "unpacked_patch",
]
