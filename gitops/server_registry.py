"""
Server registry: maps repository URLs to a configured Git server and its
provider client.

Resolution is exact. A URL either matches one registered server or raises
NoServerConfigured; nothing is inferred from host names or URL text.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from gitops.exceptions import ConfigurationError, NoServerConfigured
from models.git_models import ServerAuthStatus, ServerConfig
from providers import ProviderClient, get_provider_client
from security.credential_vault import CredentialVault, server_key
from utils.url_parsing import normalize_base_url, parse_remote_url

logger = logging.getLogger(__name__)


@dataclass
class ResolvedServer:
    """Server matched for a URL together with the client that talks to it"""
    server: ServerConfig
    provider: ProviderClient


class ServerRegistry:
    """Persistent set of Git servers keyed by normalized base URL."""

    def __init__(
        self,
        db,
        vault: Optional[CredentialVault] = None,
        provider_factory: Callable[..., ProviderClient] = get_provider_client
    ):
        """
        Args:
            db: DatabaseManager
            vault: CredentialVault used for server credentials
            provider_factory: ProviderKind -> ProviderClient
        """
        self.db = db
        self.vault = vault or CredentialVault(db)
        self.provider_factory = provider_factory

    def register(self, config: ServerConfig) -> ServerConfig:
        """
        Insert or update a server.

        Raises:
            ValueError: If the base URL is not http(s)
        """
        normalized = config.model_copy(update={'base_url': normalize_base_url(config.base_url)})
        return self.db.upsert_server(normalized)

    def list_servers(self) -> List[ServerConfig]:
        return self.db.get_servers()

    def get_server(self, server_id: str) -> Optional[ServerConfig]:
        return self.db.get_server(server_id)

    def remove_server(self, server_id: str) -> bool:
        """Delete a server along with its credentials and repository records"""
        return self.db.delete_server(server_id)

    def provider_for(self, server: ServerConfig) -> ProviderClient:
        return self.provider_factory(server.provider)

    def resolve(self, url: str) -> ResolvedServer:
        """
        Find the server a repository URL belongs to.

        HTTP(S) URLs must share scheme, host and port with the server and live
        under its base path; the longest base path wins. SSH and scp-style
        URLs match on host alone.

        Raises:
            NoServerConfigured: If no registered server matches
            ConfigurationError: If an SSH host matches more than one server
        """
        try:
            remote = parse_remote_url(url)
        except ValueError:
            raise NoServerConfigured(url)

        candidates = []
        for server in self.db.get_servers():
            server_remote = parse_remote_url(server.base_url)
            if remote.is_http:
                if server_remote.origin != remote.origin:
                    continue
                base_path = server_remote.path.rstrip('/')
                if base_path and not (remote.path == base_path or remote.path.startswith(base_path + '/')):
                    continue
                candidates.append((len(base_path), server))
            elif server_remote.host == remote.host:
                candidates.append((0, server))

        if not candidates:
            logger.warning(f"No git server configured for {url}")
            raise NoServerConfigured(url)

        candidates.sort(key=lambda item: item[0], reverse=True)
        if not remote.is_http and len(candidates) > 1:
            raise ConfigurationError(
                f"Host {remote.host} matches {len(candidates)} servers, use an HTTP(S) URL or a server id"
            )

        server = candidates[0][1]
        logger.debug(f"Resolved {url} to server {server.name}")
        return ResolvedServer(server=server, provider=self.provider_for(server))

    def resolve_id(self, server_id: str) -> ResolvedServer:
        """
        Raises:
            ConfigurationError: If the server id is unknown
        """
        server = self.db.get_server(server_id)
        if server is None:
            raise ConfigurationError(f"Git server {server_id} not found")
        return ResolvedServer(server=server, provider=self.provider_for(server))

    # Credentials and auth status

    def get_credentials(self, server_id: str):
        return self.vault.get(server_key(server_id))

    def store_credentials(self, server_id: str, credentials) -> None:
        self.vault.store(server_key(server_id), credentials)

    def get_auth_status(self, server_id: str) -> Optional[ServerAuthStatus]:
        return self.db.get_auth_status(server_id)

    def update_auth_status(self, status: ServerAuthStatus) -> bool:
        return self.db.update_auth_status(status)
