"""
Gitea provider

Token auth uses the `Authorization: token <token>` header, username/password
uses HTTP Basic. Repositories are created under an organization when the
owner is one, otherwise under the authenticated user.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from gitops.exceptions import AuthenticationError, NetworkError, ProviderAPIError
from models.git_models import (
    CreateRepositoryConfig,
    ProviderKind,
    RepositoryDescriptor,
    ServerConfig,
    TokenCredentials,
    UserInfo,
    UsernamePasswordCredentials,
)
from providers.base import ProviderClient, basic_auth_header
from utils.url_parsing import split_owner_and_name

logger = logging.getLogger(__name__)


class GiteaProvider(ProviderClient):
    """Gitea `/api/v1` client."""

    kind = ProviderKind.GITEA

    def build_auth_headers(self, credentials) -> Optional[Dict[str, str]]:
        if isinstance(credentials, TokenCredentials):
            if not credentials.token:
                return None
            return {'Authorization': f"token {credentials.token}"}
        if isinstance(credentials, UsernamePasswordCredentials):
            if not credentials.username or not credentials.password:
                return None
            return {'Authorization': basic_auth_header(credentials.username, credentials.password)}
        # SSH keys can't drive the REST API
        return None

    def parse_repository_url(self, server: ServerConfig, repo_url: str) -> Optional[Tuple[str, str]]:
        return split_owner_and_name(repo_url, server.base_url)

    def user_probe_url(self, server: ServerConfig, credentials) -> str:
        return f"{self._api(server)}/user"

    def extract_user_info(self, data: Dict[str, Any]) -> UserInfo:
        return UserInfo(
            username=data.get('login') or data.get('username'),
            name=data.get('full_name') or data.get('name'),
            email=data.get('email'),
        )

    def repository_api_url(self, server: ServerConfig, owner: str, name: str) -> str:
        return f"{self._api(server)}/repos/{owner}/{name}"

    def to_descriptor(self, data: Dict[str, Any]) -> RepositoryDescriptor:
        owner = (data.get('owner') or {}).get('login') or (data.get('owner') or {}).get('username') or ''
        name = data.get('name', '')
        return RepositoryDescriptor(
            name=name,
            owner=owner,
            full_name=data.get('full_name') or f"{owner}/{name}",
            clone_url=data.get('clone_url'),
            ssh_url=data.get('ssh_url'),
            html_url=data.get('html_url'),
            default_branch=data.get('default_branch'),
            is_private=bool(data.get('private', False)),
            description=data.get('description') or '',
        )

    async def create_repository(
        self,
        server: ServerConfig,
        credentials,
        config: CreateRepositoryConfig
    ) -> RepositoryDescriptor:
        owner = config.owner
        if not owner and config.url:
            parsed = self.parse_repository_url(server, config.url)
            owner = parsed[0] if parsed else None

        payload = {
            'name': config.name,
            'description': config.description or '',
            'private': config.is_private,
            'auto_init': config.auto_init,
            'gitignores': config.gitignore_template or '',
            'license': config.license_template or '',
        }
        if config.default_branch:
            payload['default_branch'] = config.default_branch

        if owner and await self._is_organization(server, credentials, owner):
            create_url = f"{self._api(server)}/orgs/{owner}/repos"
        else:
            create_url = f"{self._api(server)}/user/repos"
            if not owner:
                owner = await self._current_username(server, credentials)

        return await self._create_or_fetch_existing(
            server, credentials, create_url, payload, owner, config.name
        )

    async def set_default_branch(
        self,
        server: ServerConfig,
        credentials,
        repo_url: str,
        branch: str
    ) -> RepositoryDescriptor:
        parsed = self.parse_repository_url(server, repo_url)
        if not parsed:
            raise ValueError(f"Cannot extract owner/name from repository URL: {repo_url}")
        owner, name = parsed

        headers = self._require_auth_headers(credentials)
        response = await self._request(
            'PATCH',
            self.repository_api_url(server, owner, name),
            headers,
            {'default_branch': branch}
        )
        self._raise_for_status(response)
        logger.info(f"Set default branch of {owner}/{name} to {branch}")
        return self._descriptor_from(response)

    async def _is_organization(self, server: ServerConfig, credentials, owner: str) -> bool:
        """Probe /orgs/{owner}; any failure means "treat as user"."""
        headers = self.build_auth_headers(credentials) or {}
        try:
            response = await self._request('GET', f"{self._api(server)}/orgs/{owner}", headers)
        except NetworkError as e:
            logger.debug(f"Organization probe for {owner} failed, using user endpoint: {e}")
            return False
        return response.is_success

    async def _current_username(self, server: ServerConfig, credentials) -> Optional[str]:
        """Login of the authenticated user, used to read back a user-owned repository."""
        headers = self.build_auth_headers(credentials)
        if headers is None:
            return None
        try:
            response = await self._request('GET', self.user_probe_url(server, credentials), headers)
            self._raise_for_status(response)
            return self.extract_user_info(self._json_object(response)).username
        except (NetworkError, AuthenticationError, ProviderAPIError, ValueError) as e:
            logger.debug(f"Could not determine current user on {server.base_url}: {e}")
            return None

    @staticmethod
    def _api(server: ServerConfig) -> str:
        return f"{server.base_url.rstrip('/')}/api/v1"
