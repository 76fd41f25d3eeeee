"""
Bitbucket Server / Data Center provider

All requests use HTTP Basic: username:password, or username:token for
personal access tokens (a token alone is not enough). Repositories live
under a project key rather than an owner.
"""
import logging
import re
from typing import Any, Dict, Optional, Tuple

import httpx

from config.settings import AppConfig
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
from utils.url_parsing import repository_path_segments, split_owner_and_name, strip_git_suffix

logger = logging.getLogger(__name__)


def repository_slug(name: str) -> str:
    """Slug Bitbucket derives from a repository name"""
    return re.sub(r'\s+', '-', name.strip()).lower()


class BitbucketProvider(ProviderClient):
    """Bitbucket `/rest/api/1.0` client."""

    kind = ProviderKind.BITBUCKET

    def build_auth_headers(self, credentials) -> Optional[Dict[str, str]]:
        if isinstance(credentials, TokenCredentials):
            if not credentials.token or not credentials.username:
                return None
            return {'Authorization': basic_auth_header(credentials.username, credentials.token)}
        if isinstance(credentials, UsernamePasswordCredentials):
            if not credentials.username or not credentials.password:
                return None
            return {'Authorization': basic_auth_header(credentials.username, credentials.password)}
        return None

    def auth_failure_message(self, response: httpx.Response) -> str:
        return f"HTTP {response.status_code}: {response.reason_phrase}"

    def parse_repository_url(self, server: ServerConfig, repo_url: str) -> Optional[Tuple[str, str]]:
        """
        Extract (project_key, slug) from the URL layouts Bitbucket serves:

            /scm/PROJECT/repo.git
            /projects/PROJECT/repos/repo[/browse]
            /users/USER/repos/repo      -> ('~USER', repo)
            PROJECT/repo.git            (ssh clone URLs)
        """
        try:
            segments = repository_path_segments(repo_url, server.base_url)
        except ValueError:
            return None

        if len(segments) >= 3 and segments[0].lower() == 'scm':
            return segments[1], strip_git_suffix(segments[2])
        if len(segments) >= 4 and segments[2] == 'repos':
            if segments[0] == 'projects':
                return segments[1], strip_git_suffix(segments[3])
            if segments[0] == 'users':
                return f"~{segments[1]}", strip_git_suffix(segments[3])
        return split_owner_and_name(repo_url, server.base_url)

    def user_probe_url(self, server: ServerConfig, credentials) -> str:
        username = getattr(credentials, 'username', None) or 'current'
        return f"{self._api(server)}/users/{username}"

    def extract_user_info(self, data: Dict[str, Any]) -> UserInfo:
        return UserInfo(
            username=data.get('name') or data.get('slug'),
            name=data.get('displayName'),
            email=data.get('emailAddress'),
        )

    def repository_api_url(self, server: ServerConfig, owner: str, name: str) -> str:
        return f"{self._api(server)}/projects/{owner}/repos/{name}"

    def to_descriptor(self, data: Dict[str, Any]) -> RepositoryDescriptor:
        project_key = (data.get('project') or {}).get('key', '')
        slug = data.get('slug') or repository_slug(data.get('name', ''))
        links = data.get('links') or {}

        clone_url = ssh_url = None
        for link in links.get('clone', []):
            if link.get('name') == 'ssh':
                ssh_url = link.get('href')
            elif link.get('name') in ('http', 'https'):
                clone_url = link.get('href')
        self_links = links.get('self') or []

        return RepositoryDescriptor(
            name=data.get('name') or slug,
            owner=project_key,
            full_name=f"{project_key}/{slug}",
            clone_url=clone_url,
            ssh_url=ssh_url,
            html_url=self_links[0].get('href') if self_links else None,
            is_private=not data.get('public', False),
            description=data.get('description') or '',
        )

    async def create_repository(
        self,
        server: ServerConfig,
        credentials,
        config: CreateRepositoryConfig
    ) -> RepositoryDescriptor:
        project_key = config.project_key or config.owner
        if not project_key and config.url:
            parsed = self.parse_repository_url(server, config.url)
            project_key = parsed[0] if parsed else None
        project_key = project_key or AppConfig.BITBUCKET_DEFAULT_PROJECT

        payload = {
            'name': config.name,
            'scmId': 'git',
            'public': not config.is_private,
            'description': config.description or '',
        }
        if config.default_branch:
            payload['defaultBranch'] = config.default_branch

        return await self._create_or_fetch_existing(
            server,
            credentials,
            f"{self._api(server)}/projects/{project_key}/repos",
            payload,
            project_key,
            repository_slug(config.name),
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
            raise ValueError(f"Cannot extract project/slug from repository URL: {repo_url}")
        project_key, slug = parsed

        headers = self._require_auth_headers(credentials)
        response = await self._request(
            'PUT',
            f"{self.repository_api_url(server, project_key, slug)}/branches/default",
            headers,
            {'id': f"refs/heads/{branch}"}
        )
        self._raise_for_status(response)
        logger.info(f"Set default branch of {project_key}/{slug} to {branch}")

        descriptor = await self.get_repository(server, credentials, project_key, slug)
        return descriptor.model_copy(update={'default_branch': branch})

    @staticmethod
    def _api(server: ServerConfig) -> str:
        return f"{server.base_url.rstrip('/')}/rest/api/1.0"
