"""
Merge conflict state machine

Runs dry-run merges against a working copy and guarantees the copy is left
without a merge in progress on every exit path.

State Flow:
    clean -> dry_running -> clean_aborted
                        |-> conflicted_aborted
                        |-> failed_aborted

A terminal state may start another dry run, so repeated checks against the
same controller are allowed.

Usage:
    sm = MergeConflictStateMachine(controller)
    report = await sm.check_merge_conflicts('feature/x')
    if report.has_conflicts:
        ...
"""
import logging
from enum import Enum
from typing import List

from gitops.working_copy import WorkingCopyController
from models.git_models import MergeConflictReport, OperationResult

logger = logging.getLogger(__name__)


class MergeState(str, Enum):
    CLEAN = 'clean'
    DRY_RUNNING = 'dry_running'
    CLEAN_ABORTED = 'clean_aborted'
    CONFLICTED_ABORTED = 'conflicted_aborted'
    FAILED_ABORTED = 'failed_aborted'


class MergeConflictStateMachine:
    """Dry-run merges with table-validated state transitions."""

    # Valid state transitions (from_state -> to_state)
    VALID_TRANSITIONS = {
        MergeState.CLEAN: [MergeState.DRY_RUNNING],
        MergeState.DRY_RUNNING: [
            MergeState.CLEAN_ABORTED,
            MergeState.CONFLICTED_ABORTED,
            MergeState.FAILED_ABORTED,
        ],
        MergeState.CLEAN_ABORTED: [MergeState.DRY_RUNNING],
        MergeState.CONFLICTED_ABORTED: [MergeState.DRY_RUNNING],
        MergeState.FAILED_ABORTED: [MergeState.DRY_RUNNING],
    }

    def __init__(self, controller: WorkingCopyController):
        self.controller = controller
        self.state = MergeState.CLEAN

    def can_transition(self, from_state: MergeState, to_state: MergeState) -> bool:
        return to_state in self.VALID_TRANSITIONS.get(from_state, [])

    def transition(self, to_state: MergeState) -> None:
        """
        Raises:
            RuntimeError: On a transition the table does not allow
        """
        if not self.can_transition(self.state, to_state):
            raise RuntimeError(f"Invalid merge state transition: {self.state.value} -> {to_state.value}")
        logger.debug(f"Merge state {self.state.value} -> {to_state.value} ({self.controller.path})")
        self.state = to_state

    async def check_merge_conflicts(self, branch: str) -> MergeConflictReport:
        """
        Dry-run `git merge --no-commit --no-ff <branch>` and abort it.

        Returns:
            MergeConflictReport with the sorted conflicting paths. A merge
            that fails for any other reason has has_conflicts=False and
            error set.
        """
        if await self.controller.is_merging():
            return MergeConflictReport(
                has_conflicts=False,
                error="A merge is already in progress, resolve or abort it first",
            )

        self.transition(MergeState.DRY_RUNNING)
        final_state = MergeState.FAILED_ABORTED
        try:
            result = await self.controller.merge(branch, no_ff=True, no_commit=True)
            conflicts: List[str] = (result.data or {}).get('conflicts', []) if not result.success else []

            if result.success:
                final_state = MergeState.CLEAN_ABORTED
                report = MergeConflictReport(has_conflicts=False)
            elif conflicts:
                final_state = MergeState.CONFLICTED_ABORTED
                report = MergeConflictReport(has_conflicts=True, conflicts=sorted(conflicts))
            else:
                report = MergeConflictReport(has_conflicts=False, error=result.error)
        finally:
            await self._abort_if_merging()
            self.transition(final_state)

        logger.info(
            f"Dry-run merge of {branch} in {self.controller.path}: "
            f"{len(report.conflicts)} conflict(s)"
        )
        return report

    async def resolve_merge_conflicts(self, files: List[str]) -> OperationResult:
        """Stage the resolved files and conclude the merge with its prepared message."""
        if not files:
            return OperationResult.fail("No files given to resolve")

        staged = await self.controller.add(files)
        if not staged.success:
            return staged

        committed = await self.controller.conclude_merge()
        if not committed.success:
            return committed

        logger.info(f"Resolved merge conflicts in {len(files)} file(s) in {self.controller.path}")
        return OperationResult.ok(
            "Merge conflicts resolved",
            data={'files': list(files), 'sha': committed.data['sha']}
        )

    async def abort_merge(self) -> OperationResult:
        return await self.controller.abort_merge()

    async def is_merging(self) -> bool:
        return await self.controller.is_merging()

    async def _abort_if_merging(self) -> None:
        # --no-commit leaves MERGE_HEAD even for a clean merge; a fast failure leaves nothing
        if await self.controller.is_merging():
            aborted = await self.controller.abort_merge()
            if not aborted.success:
                logger.error(f"Failed to abort dry-run merge in {self.controller.path}: {aborted.error}")
