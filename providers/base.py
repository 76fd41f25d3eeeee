"""
Provider client interface for Git hosting REST APIs.

Each provider exposes the same capability set:
    test_authentication, test_repository_access, create_repository,
    get_repository, set_default_branch

Subclasses supply the provider-specific pieces (auth headers, URL layout,
payload shapes); request plumbing, status handling and the single
re-fetch after an "already exists" conflict live here.

Error model:
    - httpx transport errors and timeouts  -> NetworkError
    - 401/403                              -> AuthenticationError
    - any other non-2xx                    -> ProviderAPIError(status, body)
"""
import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import httpx

from config.settings import AppConfig
from gitops.exceptions import (
    AlreadyExistsError,
    AuthenticationError,
    NetworkError,
    ProviderAPIError,
)
from models.git_models import (
    AuthStatus,
    CreateRepositoryConfig,
    ProviderKind,
    RepositoryDescriptor,
    ServerConfig,
    ServerValidationResult,
    UserInfo,
)

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = 'Invalid authentication method or missing credentials'


def basic_auth_header(username: str, secret: str) -> str:
    """HTTP Basic Authorization header value"""
    encoded = base64.b64encode(f"{username}:{secret}".encode('utf-8')).decode('ascii')
    return f"Basic {encoded}"


class ProviderClient(ABC):
    """Uniform capability set over one Git hosting REST API."""

    kind: ProviderKind

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            timeout: Per-request deadline in seconds (defaults to AppConfig.HTTP_TIMEOUT)
            transport: Optional httpx transport, used by tests to stub the API
        """
        self.timeout = timeout if timeout is not None else AppConfig.HTTP_TIMEOUT
        self.transport = transport

    # ------------------------------------------------------------------
    # Provider-specific hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def build_auth_headers(self, credentials) -> Optional[Dict[str, str]]:
        """
        Authorization header for the credential shape.

        Returns:
            Header dict, or None when the credentials lack a required field
        """

    @abstractmethod
    def parse_repository_url(self, server: ServerConfig, repo_url: str) -> Optional[Tuple[str, str]]:
        """(owner, name) of a repository URL, or None if it can't be parsed."""

    @abstractmethod
    def user_probe_url(self, server: ServerConfig, credentials) -> str:
        """Endpoint returning the authenticated user."""

    @abstractmethod
    def extract_user_info(self, data: Dict[str, Any]) -> UserInfo:
        """Identity from the user probe response."""

    @abstractmethod
    def repository_api_url(self, server: ServerConfig, owner: str, name: str) -> str:
        """REST endpoint of a single repository."""

    @abstractmethod
    def to_descriptor(self, data: Dict[str, Any]) -> RepositoryDescriptor:
        """Provider JSON -> RepositoryDescriptor."""

    @abstractmethod
    async def create_repository(
        self,
        server: ServerConfig,
        credentials,
        config: CreateRepositoryConfig
    ) -> RepositoryDescriptor:
        """Create a repository, returning the existing one if it is already there."""

    @abstractmethod
    async def set_default_branch(
        self,
        server: ServerConfig,
        credentials,
        repo_url: str,
        branch: str
    ) -> RepositoryDescriptor:
        """Change the default branch of a repository."""

    # ------------------------------------------------------------------
    # Shared capabilities
    # ------------------------------------------------------------------

    async def test_authentication(self, server: ServerConfig, credentials) -> ServerValidationResult:
        """
        Probe the provider's user endpoint with the given credentials.

        A reachable host that rejects the credentials reports can_connect=True,
        is_valid=False; an unreachable host reports can_connect=False.
        """
        headers = self.build_auth_headers(credentials)
        if headers is None:
            return ServerValidationResult.invalid(INVALID_CREDENTIALS_MESSAGE)

        url = self.user_probe_url(server, credentials)
        try:
            response = await self._request('GET', url, headers)
        except NetworkError as e:
            logger.warning(f"{self.kind.value} authentication probe failed for {server.base_url}: {e}")
            return ServerValidationResult.invalid(str(e), can_connect=False)

        if response.is_success:
            try:
                user_info = self.extract_user_info(self._json_object(response))
            except (ProviderAPIError, ValueError):
                user_info = None
            logger.info(
                f"{self.kind.value} authentication successful for {server.base_url}"
                f" as {user_info.username if user_info else 'unknown user'}"
            )
            return ServerValidationResult(
                is_valid=True,
                can_connect=True,
                auth_status=AuthStatus.SUCCESS,
                user_info=user_info,
            )

        logger.warning(
            f"{self.kind.value} authentication failed for {server.base_url} "
            f"with status {response.status_code}"
        )
        return ServerValidationResult.invalid(self.auth_failure_message(response), can_connect=True)

    def auth_failure_message(self, response: httpx.Response) -> str:
        return f"Authentication failed: {response.status_code} {response.reason_phrase}"

    async def test_repository_access(self, server: ServerConfig, credentials, repo_url: str) -> bool:
        """True when the repository API answers 2xx for these credentials."""
        parsed = self.parse_repository_url(server, repo_url)
        if not parsed:
            logger.warning(f"Cannot extract owner/name from repository URL: {repo_url}")
            return False

        headers = self.build_auth_headers(credentials)
        if headers is None:
            return False

        owner, name = parsed
        try:
            response = await self._request('GET', self.repository_api_url(server, owner, name), headers)
        except NetworkError as e:
            logger.warning(f"Repository access check failed for {repo_url}: {e}")
            return False
        return response.is_success

    async def get_repository(
        self,
        server: ServerConfig,
        credentials,
        owner: str,
        name: str
    ) -> RepositoryDescriptor:
        headers = self._require_auth_headers(credentials)
        response = await self._request('GET', self.repository_api_url(server, owner, name), headers)
        self._raise_for_status(response)
        return self._descriptor_from(response)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        client_kwargs = {'timeout': httpx.Timeout(self.timeout)}
        if self.transport is not None:
            client_kwargs['transport'] = self.transport
        return httpx.AsyncClient(**client_kwargs)

    async def _request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        json_body: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """
        Send one request.

        Raises:
            NetworkError: On connection failures and timeouts
        """
        request_headers = {'Content-Type': 'application/json', 'Accept': 'application/json', **headers}
        try:
            async with self._client() as client:
                response = await client.request(method, url, headers=request_headers, json=json_body)
        except httpx.TimeoutException:
            raise NetworkError(f"Request to {url} timed out after {self.timeout}s")
        except httpx.TransportError as e:
            raise NetworkError(f"Cannot reach {url}: {e}")

        logger.debug(f"{method} {url} -> {response.status_code}")
        return response

    def _require_auth_headers(self, credentials) -> Dict[str, str]:
        headers = self.build_auth_headers(credentials)
        if headers is None:
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)
        return headers

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Authentication failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        raise ProviderAPIError(response.status_code, response.text)

    @staticmethod
    def _json_object(response: httpx.Response) -> Dict[str, Any]:
        """
        Decoded body of a successful response.

        Raises:
            ProviderAPIError: If the body is not a JSON object (proxy pages, lists, empty bodies)
        """
        try:
            data = response.json()
        except ValueError:
            raise ProviderAPIError(
                response.status_code, response.text,
                f"HTTP {response.status_code}: response body is not JSON"
            )
        if not isinstance(data, dict):
            raise ProviderAPIError(
                response.status_code, response.text,
                f"HTTP {response.status_code}: expected a JSON object, got {type(data).__name__}"
            )
        return data

    def _descriptor_from(self, response: httpx.Response) -> RepositoryDescriptor:
        """
        Raises:
            ProviderAPIError: If the body does not describe a repository
        """
        data = self._json_object(response)
        try:
            return self.to_descriptor(data)
        except (ValueError, TypeError, AttributeError) as e:
            raise ProviderAPIError(
                response.status_code, response.text,
                f"HTTP {response.status_code}: unexpected repository payload: {e}"
            )

    async def _create_or_fetch_existing(
        self,
        server: ServerConfig,
        credentials,
        create_url: str,
        payload: Dict[str, Any],
        existing_owner: Optional[str],
        existing_name: str
    ) -> RepositoryDescriptor:
        """
        POST a new repository; on 409 read the existing one back exactly once.

        Raises:
            AlreadyExistsError: 409 and the existing repository can't be read
        """
        headers = self._require_auth_headers(credentials)
        response = await self._request('POST', create_url, headers, payload)

        if response.status_code == 409:
            logger.info(f"Repository {existing_owner}/{existing_name} already exists, fetching it")
            if not existing_owner:
                raise AlreadyExistsError(
                    f"Repository '{existing_name}' already exists and its owner could not be determined"
                )
            try:
                return await self.get_repository(server, credentials, existing_owner, existing_name)
            except (ProviderAPIError, AuthenticationError, NetworkError) as e:
                raise AlreadyExistsError(
                    f"Repository '{existing_owner}/{existing_name}' already exists but cannot be read: {e}"
                ) from e

        self._raise_for_status(response)
        descriptor = self._descriptor_from(response)
        logger.info(f"Created repository {descriptor.full_name} on {server.base_url}")
        return descriptor
