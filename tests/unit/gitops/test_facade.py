"""
Unit tests for GitOrchestrationFacade.

Providers are GiteaProvider instances over httpx.MockTransport; working copy
operations run real git against local bare repositories.

Tests verify:
- Server authentication stores credentials and auth status
- Repository creation resolves the server, requires credentials, and
  registers the result without duplicating it
- Repository listing is enriched with server name and auth status
- Facade operations return failures instead of raising
- Missing git and storage errors surface as results, not exceptions
"""

from unittest.mock import patch

import httpx
import pytest
from sqlalchemy.exc import SQLAlchemyError

from config.settings import AppConfig
from gitops.facade import GitOrchestrationFacade
from models.git_models import (
    AuthStatus,
    CreateRepositoryConfig,
    DiffResult,
    PermissionLevel,
    ProviderKind,
    Repository,
    ServerConfig,
    TokenCredentials,
    WorkingCopyStatus,
)
from providers.gitea import GiteaProvider

REPO_JSON = {
    "name": "platform",
    "full_name": "org/platform",
    "owner": {"login": "org"},
    "clone_url": "https://git.example.com/org/platform.git",
    "ssh_url": "git@git.example.com:org/platform.git",
    "html_url": "https://git.example.com/org/platform",
    "default_branch": "main",
    "private": True,
    "description": "Platform config",
}


class FakeGiteaApi:
    """Routes requests by (method, path); unknown routes answer 404"""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def handle(self, request):
        self.calls.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"message": "not found"})
        status, body = response
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def provider_factory(self, kind):
        return GiteaProvider(transport=httpx.MockTransport(self.handle))


@pytest.fixture
def api():
    fake = FakeGiteaApi()
    fake.routes[('GET', '/api/v1/user')] = (200, {"login": "alice", "full_name": "Alice", "email": "a@example.com"})
    fake.routes[('GET', '/api/v1/orgs/org')] = (200, {"username": "org"})
    fake.routes[('POST', '/api/v1/orgs/org/repos')] = (201, REPO_JSON)
    fake.routes[('GET', '/api/v1/repos/org/platform')] = (200, REPO_JSON)
    return fake


@pytest.fixture
def facade(db, key_path, tmp_path, api):
    return GitOrchestrationFacade(
        db=db,
        key_path=key_path,
        workspace_dir=str(tmp_path / 'workspace'),
        provider_factory=api.provider_factory,
    )


async def _gitea_server(facade):
    result = await facade.save_server(
        ServerConfig(name="Gitea", provider=ProviderKind.GITEA, base_url="https://git.example.com")
    )
    assert result.success
    return result.data


async def _authenticated_server(facade):
    server = await _gitea_server(facade)
    validation = await facade.authenticate_server(server.id, {"method": "token", "token": "tok"})
    assert validation.is_valid
    return server


class TestConstruction:

    def test_default_storage_prepares_data_dirs(self, key_path, api):
        with patch('gitops.facade.ensure_data_dirs') as ensure_dirs, patch('gitops.facade.DatabaseManager'):
            GitOrchestrationFacade(key_path=key_path, provider_factory=api.provider_factory)

        ensure_dirs.assert_called_once_with()

    def test_injected_database_skips_data_dirs(self, db, key_path, api):
        with patch('gitops.facade.ensure_data_dirs') as ensure_dirs:
            GitOrchestrationFacade(db=db, key_path=key_path, provider_factory=api.provider_factory)

        ensure_dirs.assert_not_called()

    def test_invalid_configuration_is_rejected(self, db, key_path, monkeypatch):
        monkeypatch.setattr(AppConfig, 'HTTP_TIMEOUT', 0)

        with pytest.raises(ValueError, match="HTTP timeout"):
            GitOrchestrationFacade(db=db, key_path=key_path)


class TestSaveServer:

    @pytest.mark.asyncio
    async def test_moving_base_url_keeps_server(self, facade):
        server = await _gitea_server(facade)

        result = await facade.save_server(server.model_copy(update={'base_url': 'https://git2.example.com'}))

        assert result.success, result.error
        assert result.data.id == server.id
        servers = await facade.list_servers()
        assert [(s.id, s.base_url) for s in servers] == [(server.id, 'https://git2.example.com')]

    @pytest.mark.asyncio
    async def test_storage_error_becomes_failure(self, facade):
        with patch.object(facade.registry, 'register', side_effect=SQLAlchemyError("disk I/O error")):
            result = await facade.save_server(
                ServerConfig(name="Gitea", provider=ProviderKind.GITEA, base_url="https://git.example.com")
            )

        assert result.success is False
        assert "disk I/O error" in result.error


class TestAuthenticateServer:

    @pytest.mark.asyncio
    async def test_success_stores_credentials_and_status(self, facade):
        server = await _gitea_server(facade)

        result = await facade.authenticate_server(server.id, {"method": "token", "token": "tok"})

        assert result.is_valid is True
        status = await facade.get_server_auth_status(server.id)
        assert status.status == AuthStatus.SUCCESS
        assert status.user_info.username == "alice"
        assert status.last_check is not None
        assert facade.registry.get_credentials(server.id) == TokenCredentials(token="tok")

    @pytest.mark.asyncio
    async def test_rejection_records_failure_without_storing(self, facade, api):
        api.routes[('GET', '/api/v1/user')] = (401, {"message": "unauthorized"})
        server = await _gitea_server(facade)

        result = await facade.authenticate_server(server.id, {"method": "token", "token": "bad"})

        assert result.is_valid is False
        assert result.can_connect is True
        assert (await facade.get_server_auth_status(server.id)).status == AuthStatus.FAILED
        assert facade.registry.get_credentials(server.id) is None

    @pytest.mark.asyncio
    async def test_unknown_server(self, facade):
        result = await facade.authenticate_server("missing", {"method": "token", "token": "tok"})

        assert result.is_valid is False
        assert result.error == "Server not found"

    @pytest.mark.asyncio
    async def test_malformed_credentials(self, facade):
        server = await _gitea_server(facade)

        result = await facade.authenticate_server(server.id, {"method": "carrier-pigeon"})

        assert result.is_valid is False
        assert result.error.startswith("Invalid credentials")

    @pytest.mark.asyncio
    async def test_credential_storage_error_is_invalid(self, facade):
        server = await _gitea_server(facade)

        with patch.object(facade.registry, 'store_credentials', side_effect=SQLAlchemyError("db locked")):
            result = await facade.authenticate_server(server.id, {"method": "token", "token": "tok"})

        assert result.is_valid is False
        assert result.can_connect is True
        assert result.error.startswith("Failed to store credentials")
        assert (await facade.get_server_auth_status(server.id)).status == AuthStatus.FAILED

    @pytest.mark.asyncio
    async def test_auth_status_storage_error_is_invalid(self, facade):
        server = await _gitea_server(facade)

        with patch.object(facade.registry, 'update_auth_status', side_effect=SQLAlchemyError("db locked")):
            result = await facade.authenticate_server(server.id, {"method": "token", "token": "tok"})

        assert result.is_valid is False
        assert "db locked" in result.error


class TestCreateRepository:

    @pytest.mark.asyncio
    async def test_creates_and_registers(self, facade):
        server = await _authenticated_server(facade)

        result = await facade.create_repository(
            CreateRepositoryConfig(name="platform", url="https://git.example.com/org/platform.git")
        )

        assert result.success, result.error
        repository = result.data
        assert repository.url == "https://git.example.com/org/platform.git"
        assert repository.server_id == server.id
        assert repository.server_name == "Gitea"
        assert repository.permissions.devops == PermissionLevel.FULL

    @pytest.mark.asyncio
    async def test_repeated_creation_keeps_one_registry_entry(self, facade, api):
        await _authenticated_server(facade)
        config = CreateRepositoryConfig(name="platform", url="https://git.example.com/org/platform.git")

        first = await facade.create_repository(config)
        api.routes[('POST', '/api/v1/orgs/org/repos')] = (409, {"message": "already exists"})
        second = await facade.create_repository(config)

        assert second.success, second.error
        assert second.data.id == first.data.id
        assert len(await facade.list_repositories()) == 1

    @pytest.mark.asyncio
    async def test_unauthenticated_server(self, facade):
        await _gitea_server(facade)

        result = await facade.create_repository(
            CreateRepositoryConfig(name="platform", url="https://git.example.com/org/platform.git")
        )

        assert result.success is False
        assert "not authenticated" in result.error

    @pytest.mark.asyncio
    async def test_unregistered_host(self, facade):
        await _authenticated_server(facade)

        result = await facade.create_repository(
            CreateRepositoryConfig(name="platform", url="https://other.example.org/org/platform.git")
        )

        assert result.success is False
        assert "No git server configured" in result.error

    @pytest.mark.asyncio
    async def test_unknown_server_id(self, facade):
        result = await facade.create_repository(CreateRepositoryConfig(name="platform"), server_id="missing")

        assert result.success is False
        assert "not found" in result.error

    @pytest.mark.asyncio
    async def test_provider_error_becomes_failure(self, facade, api):
        api.routes[('POST', '/api/v1/orgs/org/repos')] = (500, {"message": "boom"})
        await _authenticated_server(facade)

        result = await facade.create_repository(
            CreateRepositoryConfig(name="platform", url="https://git.example.com/org/platform.git")
        )

        assert result.success is False
        assert "500" in result.error

    @pytest.mark.asyncio
    async def test_non_json_success_body_becomes_failure(self, facade, api):
        api.routes[('POST', '/api/v1/orgs/org/repos')] = (201, "<html>ok</html>")
        await _authenticated_server(facade)

        result = await facade.create_repository(
            CreateRepositoryConfig(name="platform", url="https://git.example.com/org/platform.git")
        )

        assert result.success is False
        assert "not JSON" in result.error
        assert await facade.list_repositories() == []


class TestRepositoryRegistry:

    @pytest.mark.asyncio
    async def test_save_with_validation_sets_access(self, facade):
        server = await _authenticated_server(facade)

        result = await facade.save_repository(Repository(
            name="platform", url="https://git.example.com/org/platform.git", server_id=server.id
        ))

        assert result.success, result.error
        assert result.data.auth_status == AuthStatus.SUCCESS
        assert result.data.permissions.developer == PermissionLevel.READ_ONLY

    @pytest.mark.asyncio
    async def test_save_without_credentials_fails_validation(self, facade):
        server = await _gitea_server(facade)

        result = await facade.save_repository(Repository(
            name="platform", url="https://git.example.com/org/platform.git", server_id=server.id
        ))

        assert result.success is False
        assert "No credentials found for server" in result.error

    @pytest.mark.asyncio
    async def test_save_for_unknown_server(self, facade):
        result = await facade.save_repository(
            Repository(name="platform", url="https://git.example.com/org/platform.git", server_id="missing"),
            validate=False,
        )

        assert result.success is False

    @pytest.mark.asyncio
    async def test_access_check_reports_permissions(self, facade):
        server = await _authenticated_server(facade)

        allowed = await facade.test_repository_access(server.id, "https://git.example.com/org/platform.git")
        denied = await facade.test_repository_access(server.id, "https://git.example.com/org/secret.git")

        assert allowed.has_access is True
        assert allowed.permissions.devops == PermissionLevel.FULL
        assert denied.has_access is False
        assert denied.permissions.devops == PermissionLevel.NONE

    @pytest.mark.asyncio
    async def test_list_is_enriched_and_health_grouped(self, facade):
        server = await _authenticated_server(facade)
        other = (await facade.save_server(
            ServerConfig(name="Other", provider=ProviderKind.GITEA, base_url="https://other.example.org")
        )).data
        await facade.save_repository(
            Repository(name="platform", url="https://git.example.com/org/platform.git", server_id=server.id),
            validate=False,
        )

        repositories = await facade.list_repositories()
        health = {entry['server_id']: entry for entry in await facade.check_all_repositories_health()}

        assert repositories[0].server_name == "Gitea"
        assert repositories[0].auth_status == AuthStatus.SUCCESS
        assert [r.name for r in health[server.id]['repositories']] == ["platform"]
        assert health[server.id]['status'] == AuthStatus.SUCCESS
        assert health[other.id]['repositories'] == []
        assert health[other.id]['status'] == AuthStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_remove_server_cascades(self, facade):
        server = await _authenticated_server(facade)
        saved = await facade.save_repository(
            Repository(name="platform", url="https://git.example.com/org/platform.git", server_id=server.id),
            validate=False,
        )

        removed = await facade.remove_server(server.id)

        assert removed.success
        assert await facade.get_repository(saved.data.id) is None
        assert facade.registry.get_credentials(server.id) is None
        assert (await facade.remove_server(server.id)).success is False


class TestSetDefaultBranch:

    @pytest.mark.asyncio
    async def test_patches_through_provider(self, facade, api):
        api.routes[('PATCH', '/api/v1/repos/org/platform')] = (200, {**REPO_JSON, "default_branch": "develop"})
        await _authenticated_server(facade)

        result = await facade.set_default_branch("https://git.example.com/org/platform.git", "develop")

        assert result.success, result.error
        assert result.data.default_branch == "develop"

    @pytest.mark.asyncio
    async def test_list_body_becomes_failure(self, facade, api):
        api.routes[('PATCH', '/api/v1/repos/org/platform')] = (200, [REPO_JSON])
        await _authenticated_server(facade)

        result = await facade.set_default_branch("https://git.example.com/org/platform.git", "develop")

        assert result.success is False
        assert "expected a JSON object" in result.error


@pytest.mark.requires_git
class TestWorkingCopyOperations:

    @pytest.mark.asyncio
    async def test_clone_commit_push_with_unregistered_remote(self, facade, tmp_path, seeded_remote, git):
        work = str(tmp_path / 'work')

        cloned = await facade.clone_repository(str(seeded_remote), work)
        (tmp_path / 'work' / 'values.yaml').write_text("a: 1\n")
        committed = await facade.commit_changes(work, "Add values")
        pushed = await facade.push_changes(work)
        history = await facade.get_commit_history(work)

        assert cloned.success, cloned.error
        assert committed.success, committed.error
        assert pushed.success, pushed.error
        assert history[0].message == "Add values"
        assert git(seeded_remote, 'log', '-1', '--format=%s', 'main').strip() == "Add values"

    @pytest.mark.asyncio
    async def test_bootstrap_through_facade(self, facade, seeded_remote, git):
        result = await facade.create_environment_branches(str(seeded_remote), ['dev'])

        assert result.created_branches == ['dev']
        assert await facade.customer_branch_exists(str(seeded_remote), 'acme', 'dev') is False

    @pytest.mark.asyncio
    async def test_checkout_missing_branch_fails(self, facade, tmp_path, seeded_remote):
        work = str(tmp_path / 'work')
        await facade.clone_repository(str(seeded_remote), work)

        result = await facade.checkout_branch(work, 'does-not-exist')
        created = await facade.checkout_branch(work, 'feature/new', create=True)

        assert result.success is False
        assert created.success is True
        assert (await facade.get_status(work)).branch == 'feature/new'


class TestGitUnavailable:

    @pytest.fixture
    def gitless_facade(self, db, key_path, tmp_path, api):
        return GitOrchestrationFacade(
            db=db,
            key_path=key_path,
            workspace_dir=str(tmp_path / 'workspace'),
            git_binary='/nonexistent/git-binary',
            provider_factory=api.provider_factory,
        )

    @pytest.mark.asyncio
    async def test_read_operations_return_empty_results(self, gitless_facade, tmp_path):
        path = str(tmp_path / 'work')

        assert await gitless_facade.get_status(path) == WorkingCopyStatus()
        assert await gitless_facade.get_diff(path) == DiffResult()
        assert await gitless_facade.get_commit_history(path) == []

    @pytest.mark.asyncio
    async def test_customer_branch_check_is_false(self, gitless_facade):
        assert await gitless_facade.customer_branch_exists(
            "https://git.example.com/org/platform.git", 'acme', 'dev'
        ) is False

    @pytest.mark.asyncio
    async def test_clone_fails_cleanly(self, gitless_facade, tmp_path):
        result = await gitless_facade.clone_repository(
            "https://git.example.com/org/platform.git", str(tmp_path / 'work')
        )

        assert result.success is False
