"""
GitOps orchestration layer.

Components live in submodules and are imported from there:
- gitops.facade: GitOrchestrationFacade, the single public surface
- gitops.server_registry: ServerRegistry (URL -> server + provider)
- gitops.working_copy: WorkingCopyController (local git binary)
- gitops.merge_state: MergeConflictStateMachine (dry-run merges)
- gitops.bootstrapper: EnvironmentBootstrapper (environment branches)
- gitops.scaffold: Environment and GitOps directory scaffolds

Only the exception taxonomy is re-exported here, providers depend on it.
"""
from gitops.exceptions import (
    GitOpsError,
    ConfigurationError,
    NoServerConfigured,
    MissingCredentials,
    EncryptionUnavailable,
    AuthenticationError,
    NetworkError,
    ProviderAPIError,
    AlreadyExistsError,
    GitNotAvailableError,
)

__all__ = [
    'GitOpsError',
    'ConfigurationError',
    'NoServerConfigured',
    'MissingCredentials',
    'EncryptionUnavailable',
    'AuthenticationError',
    'NetworkError',
    'ProviderAPIError',
    'AlreadyExistsError',
    'GitNotAvailableError',
]
