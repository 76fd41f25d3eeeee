"""
Environment bootstrapper

Creates one branch per environment in a remote repository, each carrying the
environment scaffold, from a single temporary clone:

    clone -> for each env: base -> branch -> scaffold -> commit -> push

Environments are processed sequentially and independently; a failed
environment is recorded and the clone is force-reset before the next one.
The temporary clone is removed on every exit path.
"""
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Callable, List, Optional

from config.paths import WORKSPACE_DIR
from gitops.scaffold import environment_scaffold
from gitops.working_copy import WorkingCopyController, customer_branch_name
from models.git_models import (
    EnvironmentBranchesResult,
    EnvironmentFailure,
    OperationResult,
    validate_branch_name,
)

logger = logging.getLogger(__name__)


class EnvironmentBootstrapper:
    """Per-environment branch creation against one temporary clone."""

    def __init__(
        self,
        workspace_dir: Optional[str] = None,
        controller_factory: Callable[..., WorkingCopyController] = WorkingCopyController
    ):
        """
        Args:
            workspace_dir: Parent of temporary clones, defaults to config.paths.WORKSPACE_DIR
            controller_factory: path -> WorkingCopyController
        """
        self.workspace_dir = Path(workspace_dir or WORKSPACE_DIR)
        self.controller_factory = controller_factory

    async def create_environment_branches(
        self,
        repository_url: str,
        environments: List[str],
        credentials=None
    ) -> EnvironmentBranchesResult:
        """
        Returns:
            EnvironmentBranchesResult where success means at least one branch
            was created; created_branches and errors never share an environment
        """
        # Repeated names are bootstrapped once, first occurrence wins
        environments = list(dict.fromkeys(environments))

        self.workspace_dir.mkdir(parents=True, exist_ok=True)
        temp_dir = Path(tempfile.mkdtemp(prefix='env-bootstrap-', dir=str(self.workspace_dir)))
        result = EnvironmentBranchesResult(success=False)

        try:
            controller = self.controller_factory(temp_dir / 'repo')
            cloned = await controller.clone(repository_url, credentials=credentials)
            if not cloned.success:
                logger.error(f"Environment bootstrap clone failed for {repository_url}: {cloned.error}")
                result.errors = [
                    EnvironmentFailure(environment=env, error=f"Clone failed: {cloned.error}")
                    for env in environments
                ]
                return result

            is_empty = not await controller.has_commits()
            base_branch = None if is_empty else await controller.current_branch()
            logger.info(
                f"Bootstrapping {len(environments)} environment(s) in {repository_url} "
                f"from {'an empty repository' if is_empty else base_branch}"
            )

            for environment in environments:
                outcome = await self._create_environment(controller, environment, base_branch, credentials)
                if outcome.success:
                    result.created_branches.append(environment)
                else:
                    logger.warning(f"Environment {environment} failed: {outcome.error}")
                    result.errors.append(EnvironmentFailure(environment=environment, error=outcome.error))
                    await controller.discard_changes()

            result.success = len(result.created_branches) > 0
            return result
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    async def _create_environment(
        self,
        controller: WorkingCopyController,
        environment: str,
        base_branch: Optional[str],
        credentials
    ) -> OperationResult:
        try:
            validate_branch_name(environment)
            files = environment_scaffold(environment)
        except ValueError as e:
            return OperationResult.fail(f"Invalid environment name '{environment}': {e}")

        if base_branch:
            returned = await controller.checkout(base_branch)
            if not returned.success:
                return returned
            created = await controller.checkout_new_branch(environment)
        else:
            created = await controller.checkout_orphan(environment)
        if not created.success:
            return created

        try:
            for relative_path, content in files.items():
                controller.write_file(relative_path, content)
        except (ValueError, OSError) as e:
            return OperationResult.fail(f"Failed to write scaffold: {e}")

        staged = await controller.add(list(files))
        if not staged.success:
            return staged

        committed = await controller.commit(f"Initialize {environment} environment")
        if not committed.success:
            return committed

        return await controller.push(branch=environment, credentials=credentials, set_upstream=True)

    async def customer_branch_exists(
        self,
        repository_url: str,
        customer: str,
        environment: str,
        credentials=None
    ) -> bool:
        """Probe the remote for customer/<customer>/<env>."""
        try:
            branch = customer_branch_name(customer, environment)
        except ValueError:
            return False
        controller = self.controller_factory(self.workspace_dir)
        return await controller.remote_branch_exists(branch, credentials=credentials, url=repository_url)
