"""
Git hosting provider clients.

This module provides:
- ProviderClient: Uniform REST capability set (auth probe, access check, create, default branch)
- GiteaProvider / BitbucketProvider: Concrete clients
- get_provider_client(): Client for a ProviderKind
"""
from typing import Dict, Type

from models.git_models import ProviderKind
from providers.base import ProviderClient
from providers.bitbucket import BitbucketProvider
from providers.gitea import GiteaProvider

PROVIDER_CLIENTS: Dict[ProviderKind, Type[ProviderClient]] = {
    ProviderKind.GITEA: GiteaProvider,
    ProviderKind.BITBUCKET: BitbucketProvider,
}


def get_provider_client(kind, **kwargs) -> ProviderClient:
    """
    Instantiate the client for a provider kind.

    Args:
        kind: ProviderKind or its string value
        **kwargs: Passed to the client (timeout, transport)

    Raises:
        ValueError: If no client is registered for the kind
    """
    try:
        provider_kind = ProviderKind(kind)
    except ValueError:
        raise ValueError(f"Unsupported git provider: {kind}")
    return PROVIDER_CLIENTS[provider_kind](**kwargs)


__all__ = [
    'ProviderClient',
    'GiteaProvider',
    'BitbucketProvider',
    'PROVIDER_CLIENTS',
    'get_provider_client',
]
