"""
Git orchestration facade

Single async entry point for an embedding application. Resolves the server
and provider for a request, loads credentials from the vault, delegates to
the provider client / working copy / bootstrapper, and normalizes every
outcome into an OperationResult or a typed validation result.

Provider, network and configuration exceptions never cross this boundary.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from config.paths import ensure_data_dirs
from config.settings import AppConfig
from database import DatabaseManager
from gitops.bootstrapper import EnvironmentBootstrapper
from gitops.exceptions import (
    ConfigurationError,
    EncryptionUnavailable,
    GitNotAvailableError,
    GitOpsError,
    MissingCredentials,
)
from gitops.merge_state import MergeConflictStateMachine
from gitops.scaffold import generate_gitops_structure
from gitops.server_registry import ResolvedServer, ServerRegistry
from gitops.working_copy import WorkingCopyController
from models.git_models import (
    AuthStatus,
    CommitInfo,
    CreateRepositoryConfig,
    DiffResult,
    EnvironmentBranchesResult,
    EnvironmentFailure,
    GitOpsStructureOptions,
    MergeConflictReport,
    OperationResult,
    Repository,
    RepositoryAccessStatus,
    RepositoryPermissions,
    RepositoryValidationResult,
    ServerAuthStatus,
    ServerConfig,
    ServerValidationResult,
    WorkingCopyStatus,
    parse_credentials,
    utcnow,
)
from providers import get_provider_client
from security.credential_vault import CredentialVault

logger = logging.getLogger(__name__)


class GitOrchestrationFacade:
    """Public surface over servers, repositories, working copies and bootstrap."""

    def __init__(
        self,
        db: Optional[DatabaseManager] = None,
        key_path: Optional[str] = None,
        workspace_dir: Optional[str] = None,
        git_binary: Optional[str] = None,
        provider_factory: Callable = get_provider_client
    ):
        """
        Args:
            db: DatabaseManager, defaults to one on config.paths.DATABASE_PATH
            key_path: Fernet key file for the credential vault
            workspace_dir: Parent directory of bootstrap clones
            git_binary: git executable for working copies
            provider_factory: ProviderKind -> ProviderClient
        """
        AppConfig.validate()
        if db is None:
            ensure_data_dirs()
        self.db = db or DatabaseManager()
        self.vault = CredentialVault(self.db, key_path)
        self.registry = ServerRegistry(self.db, self.vault, provider_factory)
        self.git_binary = git_binary
        self.bootstrapper = EnvironmentBootstrapper(workspace_dir, controller_factory=self.open_working_copy)

    # ------------------------------------------------------------------
    # Servers
    # ------------------------------------------------------------------

    async def list_servers(self) -> List[ServerConfig]:
        return self.registry.list_servers()

    async def save_server(self, config: ServerConfig) -> OperationResult:
        try:
            saved = self.registry.register(config)
        except ValueError as e:
            return OperationResult.fail(str(e))
        except SQLAlchemyError as e:
            logger.error(f"Failed to save server {config.name}: {e}")
            return OperationResult.fail(f"Failed to save server: {e}")
        return OperationResult.ok(f"Server {saved.name} saved", data=saved)

    async def remove_server(self, server_id: str) -> OperationResult:
        if not self.registry.remove_server(server_id):
            return OperationResult.fail(f"Server {server_id} not found")
        return OperationResult.ok(f"Server {server_id} removed")

    async def authenticate_server(self, server_id: str, credentials) -> ServerValidationResult:
        """
        Test credentials against the server and, when they work, store them.

        The server auth status is overwritten with the outcome either way.
        """
        server = self.registry.get_server(server_id)
        if server is None:
            return ServerValidationResult.invalid("Server not found")

        try:
            creds = parse_credentials(credentials)
        except ValidationError as e:
            return ServerValidationResult.invalid(f"Invalid credentials: {e.errors()[0]['msg']}")

        try:
            self.registry.update_auth_status(ServerAuthStatus(server_id=server_id, status=AuthStatus.CHECKING))
        except SQLAlchemyError as e:
            logger.error(f"Failed to record auth status for server {server.name}: {e}")
            return ServerValidationResult.invalid(f"Failed to record authentication status: {e}")

        result = await self.registry.provider_for(server).test_authentication(server, creds)

        if result.is_valid:
            try:
                self.registry.store_credentials(server_id, creds)
            except EncryptionUnavailable as e:
                logger.error(f"Cannot store credentials for server {server.name}: {e}")
                result = ServerValidationResult.invalid(str(e), can_connect=True)
            except SQLAlchemyError as e:
                logger.error(f"Failed to persist credentials for server {server.name}: {e}")
                result = ServerValidationResult.invalid(f"Failed to store credentials: {e}", can_connect=True)

        try:
            self.registry.update_auth_status(ServerAuthStatus(
                server_id=server_id,
                status=AuthStatus.SUCCESS if result.is_valid else AuthStatus.FAILED,
                last_check=utcnow(),
                error=result.error,
                user_info=result.user_info,
            ))
        except SQLAlchemyError as e:
            logger.error(f"Failed to record auth status for server {server.name}: {e}")
            return ServerValidationResult.invalid(
                f"Failed to record authentication status: {e}", can_connect=result.can_connect
            )

        logger.info(f"Authentication for server {server.name}: {'success' if result.is_valid else 'failed'}")
        return result

    async def get_server_auth_status(self, server_id: str) -> Optional[ServerAuthStatus]:
        return self.registry.get_auth_status(server_id)

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    async def list_repositories(self) -> List[Repository]:
        """Registered repositories with server name and the server's auth status"""
        servers = {server.id: server for server in self.registry.list_servers()}
        enriched = []
        for repo in self.db.get_repositories():
            server = servers.get(repo.server_id)
            auth = self.registry.get_auth_status(repo.server_id)
            enriched.append(repo.model_copy(update={
                'server_name': server.name if server else None,
                'auth_status': auth.status if auth else AuthStatus.UNKNOWN,
            }))
        return enriched

    async def get_repository(self, repository_id: str) -> Optional[Repository]:
        return self.db.get_repository(repository_id)

    async def save_repository(self, repository: Repository, validate: bool = True) -> OperationResult:
        server = self.registry.get_server(repository.server_id)
        if server is None:
            return OperationResult.fail(f"Server with ID {repository.server_id} not found")

        if validate:
            validation = await self.validate_repository_access(repository.url, repository.server_id)
            if not validation.is_valid:
                return OperationResult.fail(f"Repository validation failed: {validation.error}")
            updates: Dict[str, Any] = {'auth_status': validation.auth_status, 'last_auth_check': utcnow()}
            if repository.permissions == RepositoryPermissions():
                updates['permissions'] = RepositoryPermissions.for_access(True)
            repository = repository.model_copy(update=updates)

        try:
            saved = self.db.save_repository(repository)
        except SQLAlchemyError as e:
            return OperationResult.fail(f"Failed to save repository: {e}")
        saved = saved.model_copy(update={'server_name': server.name})
        return OperationResult.ok(f"Repository {saved.name} saved", data=saved)

    async def remove_repository(self, repository_id: str) -> OperationResult:
        if not self.db.delete_repository(repository_id):
            return OperationResult.fail(f"Repository {repository_id} not found")
        return OperationResult.ok(f"Repository {repository_id} removed")

    async def validate_repository_access(self, url: str, server_id: str) -> RepositoryValidationResult:
        server = self.registry.get_server(server_id)
        if server is None:
            return RepositoryValidationResult(
                is_valid=False, can_connect=False, requires_auth=True,
                auth_status=AuthStatus.FAILED, error='Server not found',
            )

        credentials = self.registry.get_credentials(server_id)
        if credentials is None:
            return RepositoryValidationResult(
                is_valid=False, can_connect=False, requires_auth=True,
                auth_status=AuthStatus.FAILED, error='No credentials found for server',
            )

        has_access = await self.registry.provider_for(server).test_repository_access(server, credentials, url)
        if has_access:
            return RepositoryValidationResult(
                is_valid=True, can_connect=True, requires_auth=False, auth_status=AuthStatus.SUCCESS,
            )
        return RepositoryValidationResult(
            is_valid=False, can_connect=False, requires_auth=True, auth_status=AuthStatus.FAILED,
            error=f"Repository {url} is not accessible with the credentials of {server.name}",
        )

    async def test_repository_access(self, server_id: str, url: str) -> RepositoryAccessStatus:
        validation = await self.validate_repository_access(url, server_id)
        return RepositoryAccessStatus(
            repository_url=url,
            server_id=server_id,
            has_access=validation.is_valid,
            permissions=RepositoryPermissions.for_access(validation.is_valid),
            error=validation.error,
        )

    async def check_all_repositories_health(self) -> List[Dict[str, Any]]:
        """Repositories grouped by server, with each server's auth status"""
        repositories = await self.list_repositories()
        report = []
        for server in self.registry.list_servers():
            auth = self.registry.get_auth_status(server.id)
            report.append({
                'server_id': server.id,
                'server_name': server.name,
                'status': auth.status if auth else AuthStatus.UNKNOWN,
                'repositories': [repo for repo in repositories if repo.server_id == server.id],
            })
        return report

    # ------------------------------------------------------------------
    # Remote repositories
    # ------------------------------------------------------------------

    async def create_repository(
        self,
        config: CreateRepositoryConfig,
        server_id: Optional[str] = None
    ) -> OperationResult:
        """
        Create (or adopt an existing) remote repository and register it.

        The server comes from server_id or is resolved from config.url; no
        server is ever created implicitly.
        """
        try:
            resolved = self._resolve(config.url, server_id)
            credentials = self._require_credentials(resolved.server)
            descriptor = await resolved.provider.create_repository(resolved.server, credentials, config)
        except (GitOpsError, ValueError) as e:
            logger.error(f"Repository creation failed for {config.name}: {e}")
            return OperationResult.fail(str(e))

        url = descriptor.clone_url or config.url or descriptor.ssh_url
        if not url:
            return OperationResult.fail(f"Provider returned no clone URL for {descriptor.full_name}")

        existing = self.db.get_repository_by_url(url)
        try:
            repository = Repository(
                id=existing.id if existing else None,
                name=descriptor.name,
                url=url,
                branch=descriptor.default_branch or config.default_branch or AppConfig.DEFAULT_BRANCH,
                description=descriptor.description or config.description,
                permissions=RepositoryPermissions.for_access(True),
                server_id=resolved.server.id,
                auth_status=AuthStatus.SUCCESS,
                last_auth_check=utcnow(),
            )
        except ValidationError as e:
            return OperationResult.fail(f"Invalid repository returned by provider: {e.errors()[0]['msg']}")

        saved = await self.save_repository(repository, validate=False)
        if not saved.success:
            return saved
        return OperationResult.ok(f"Repository {descriptor.full_name} is ready", data=saved.data)

    async def set_default_branch(self, url: str, branch: str, server_id: Optional[str] = None) -> OperationResult:
        try:
            resolved = self._resolve(url, server_id)
            credentials = self._require_credentials(resolved.server)
            descriptor = await resolved.provider.set_default_branch(resolved.server, credentials, url, branch)
        except (GitOpsError, ValueError) as e:
            return OperationResult.fail(str(e))
        return OperationResult.ok(f"Default branch set to {branch}", data=descriptor)

    # ------------------------------------------------------------------
    # Working copies
    # ------------------------------------------------------------------

    def open_working_copy(self, path) -> WorkingCopyController:
        """
        Raises:
            GitNotAvailableError: If git is not installed
        """
        return WorkingCopyController(path, git_binary=self.git_binary)

    async def clone_repository(self, url: str, local_path: str, branch: Optional[str] = None) -> OperationResult:
        try:
            controller = self.open_working_copy(local_path)
        except GitNotAvailableError as e:
            return OperationResult.fail(str(e))
        return await controller.clone(url, credentials=self._credentials_for_url(url), branch=branch)

    async def checkout_branch(self, path: str, branch: str, create: bool = False) -> OperationResult:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            return OperationResult.fail(str(e))
        if create:
            return await controller.checkout_new_branch(branch)
        return await controller.checkout(branch)

    async def commit_changes(self, path: str, message: str, paths: Optional[List[str]] = None) -> OperationResult:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            return OperationResult.fail(str(e))
        staged = await controller.add(paths)
        if not staged.success:
            return staged
        return await controller.commit(message)

    async def push_changes(self, path: str, branch: Optional[str] = None, set_upstream: bool = False) -> OperationResult:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            return OperationResult.fail(str(e))
        credentials = self._credentials_for_url(await controller.get_remote_url())
        return await controller.push(branch=branch, credentials=credentials, set_upstream=set_upstream)

    async def pull_changes(self, path: str, branch: Optional[str] = None) -> OperationResult:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            return OperationResult.fail(str(e))
        credentials = self._credentials_for_url(await controller.get_remote_url())
        return await controller.pull(branch=branch, credentials=credentials)

    async def get_status(self, path: str) -> WorkingCopyStatus:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            logger.error(f"Cannot read status of {path}: {e}")
            return WorkingCopyStatus()
        return await controller.status()

    async def get_diff(self, path: str, staged: bool = False) -> DiffResult:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            logger.error(f"Cannot read diff of {path}: {e}")
            return DiffResult()
        return await controller.diff(staged=staged)

    async def get_commit_history(self, path: str, max_count: int = 10) -> List[CommitInfo]:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            logger.error(f"Cannot read history of {path}: {e}")
            return []
        return await controller.log(max_count=max_count)

    async def merge_branch(self, path: str, branch: str, no_ff: bool = False, squash: bool = False) -> OperationResult:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            return OperationResult.fail(str(e))
        return await controller.merge(branch, no_ff=no_ff, squash=squash)

    async def check_merge_conflicts(self, path: str, branch: str) -> MergeConflictReport:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            return MergeConflictReport(has_conflicts=False, error=str(e))
        return await MergeConflictStateMachine(controller).check_merge_conflicts(branch)

    async def resolve_merge_conflicts(self, path: str, files: List[str]) -> OperationResult:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            return OperationResult.fail(str(e))
        return await MergeConflictStateMachine(controller).resolve_merge_conflicts(files)

    async def abort_merge(self, path: str) -> OperationResult:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            return OperationResult.fail(str(e))
        return await MergeConflictStateMachine(controller).abort_merge()

    async def merge_customer_branch(
        self,
        path: str,
        customer: str,
        environment: str,
        target_branch: str
    ) -> OperationResult:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            return OperationResult.fail(str(e))
        credentials = self._credentials_for_url(await controller.get_remote_url())
        return await controller.merge_customer_branch(customer, environment, target_branch, credentials)

    async def prepare_merge_request(
        self,
        path: str,
        source_branch: str,
        target_branch: str,
        title: str,
        description: str = ''
    ) -> OperationResult:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            return OperationResult.fail(str(e))
        credentials = self._credentials_for_url(await controller.get_remote_url())
        return await controller.prepare_merge_request(source_branch, target_branch, title, description, credentials)

    async def update_customer_overrides(
        self,
        path: str,
        customer: str,
        environment: str,
        values: Dict[str, Any]
    ) -> OperationResult:
        try:
            controller = self.open_working_copy(path)
        except GitNotAvailableError as e:
            return OperationResult.fail(str(e))
        return await controller.update_customer_overrides(customer, environment, values)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    async def create_environment_branches(self, url: str, environments: List[str]) -> EnvironmentBranchesResult:
        try:
            return await self.bootstrapper.create_environment_branches(
                url, environments, credentials=self._credentials_for_url(url)
            )
        except GitNotAvailableError as e:
            return EnvironmentBranchesResult(
                success=False,
                errors=[EnvironmentFailure(environment=env, error=str(e)) for env in environments],
            )

    async def customer_branch_exists(self, url: str, customer: str, environment: str) -> bool:
        try:
            return await self.bootstrapper.customer_branch_exists(
                url, customer, environment, credentials=self._credentials_for_url(url)
            )
        except GitNotAvailableError as e:
            logger.error(f"Cannot check customer branch in {url}: {e}")
            return False

    async def generate_gitops_structure(self, repo_path: str, options: GitOpsStructureOptions) -> OperationResult:
        return generate_gitops_structure(repo_path, options)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve(self, url: Optional[str], server_id: Optional[str]) -> ResolvedServer:
        if server_id:
            return self.registry.resolve_id(server_id)
        if not url:
            raise ConfigurationError("No Git server configuration found. Please configure a Git server first.")
        return self.registry.resolve(url)

    def _require_credentials(self, server: ServerConfig):
        credentials = self.registry.get_credentials(server.id)
        if credentials is None:
            raise MissingCredentials(server.name)
        return credentials

    def _credentials_for_url(self, url: Optional[str]):
        """Stored credentials of the server owning url; None for unregistered remotes"""
        if not url:
            return None
        try:
            resolved = self.registry.resolve(url)
        except ConfigurationError:
            logger.debug(f"No server registered for {url}, using anonymous access")
            return None
        return self.registry.get_credentials(resolved.server.id)
