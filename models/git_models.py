"""
Git Models for the GitOps orchestration layer

Pydantic models for servers, credentials, repositories and operation results.
Follows the usual patterns:
- Input models with field validators for names, URLs and branches
- Credentials as a tagged union on `method`
- Uniform OperationResult for every mutating operation

Security:
    - Credential models carry secrets; they are only ever persisted encrypted
    - Secret fields are excluded from repr()
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


def utcnow() -> datetime:
    """Timezone-aware UTC now"""
    return datetime.now(timezone.utc)


# =============================================================================
# Shared Validation Helpers
# =============================================================================

_VALID_URL_PREFIXES = ('https://', 'http://', 'git@', 'ssh://')
_DANGEROUS_URL_CHARS = (';', '|', '&', '$', '`', '\n', '\r')


def _validate_name(v: Optional[str], required: bool = True) -> Optional[str]:
    """Validate display name field."""
    if v is None:
        return None
    if not v.strip():
        if required:
            raise ValueError('Name cannot be empty')
        return None
    v = v.strip()
    if re.search(r'[<>"\']', v):
        raise ValueError('Name contains invalid characters')
    return v


def _validate_url(v: Optional[str], required: bool = True) -> Optional[str]:
    """Validate git repository or server URL."""
    if v is None:
        return None
    if not v.strip():
        if required:
            raise ValueError('URL cannot be empty')
        return None
    v = v.strip()
    if not any(v.startswith(prefix) for prefix in _VALID_URL_PREFIXES):
        raise ValueError('URL must start with https://, http://, git@, or ssh://')
    if ' ' in v:
        raise ValueError('URL cannot contain spaces')
    if any(c in v for c in _DANGEROUS_URL_CHARS):
        raise ValueError('URL contains invalid characters')
    return v


def validate_branch_name(v: Optional[str], required: bool = True) -> Optional[str]:
    """Validate git branch name."""
    if v is None:
        return None
    if not v.strip():
        if required:
            raise ValueError('Branch name cannot be empty')
        return None
    v = v.strip()
    if v.startswith('-') or v.startswith('.') or v.startswith('/'):
        raise ValueError('Branch name cannot start with -, . or /')
    if '..' in v or '//' in v:
        raise ValueError('Branch name cannot contain .. or //')
    if v.endswith('.lock') or v.endswith('/') or v.endswith('.'):
        raise ValueError('Branch name cannot end with .lock, / or .')
    if not re.match(r'^[a-zA-Z0-9/_.-]+$', v):
        raise ValueError('Branch name contains invalid characters')
    return v


# =============================================================================
# Enums
# =============================================================================


class ProviderKind(str, Enum):
    """Git hosting providers with a ProviderClient implementation"""
    GITEA = 'gitea'
    BITBUCKET = 'bitbucket'


class AuthStatus(str, Enum):
    UNKNOWN = 'unknown'
    CHECKING = 'checking'
    SUCCESS = 'success'
    FAILED = 'failed'


class PermissionLevel(str, Enum):
    FULL = 'full'
    READ_ONLY = 'read-only'
    DEV_ONLY = 'dev-only'
    NONE = 'none'


# =============================================================================
# Credentials (tagged union on `method`)
# =============================================================================


class TokenCredentials(BaseModel):
    """Personal access token; Bitbucket additionally needs the username."""
    method: Literal['token'] = 'token'
    token: Optional[str] = Field(None, repr=False)
    username: Optional[str] = None


class UsernamePasswordCredentials(BaseModel):
    method: Literal['credentials'] = 'credentials'
    username: Optional[str] = None
    password: Optional[str] = Field(None, repr=False)


class SshKeyCredentials(BaseModel):
    """SSH key given either as a path on disk or as PEM content."""
    method: Literal['ssh'] = 'ssh'
    username: Optional[str] = None
    ssh_key_path: Optional[str] = None
    ssh_private_key: Optional[str] = Field(None, repr=False)
    ssh_passphrase: Optional[str] = Field(None, repr=False)


ServerCredentials = Annotated[
    Union[TokenCredentials, UsernamePasswordCredentials, SshKeyCredentials],
    Field(discriminator='method'),
]

_credentials_adapter = TypeAdapter(ServerCredentials)


def parse_credentials(data: Any) -> Union[TokenCredentials, UsernamePasswordCredentials, SshKeyCredentials]:
    """
    Build typed credentials from a dict or JSON string.

    Raises:
        pydantic.ValidationError: On a missing or unrecognised `method` tag
    """
    if isinstance(data, (TokenCredentials, UsernamePasswordCredentials, SshKeyCredentials)):
        return data
    if isinstance(data, (str, bytes)):
        return _credentials_adapter.validate_json(data)
    return _credentials_adapter.validate_python(data)


# =============================================================================
# Servers
# =============================================================================


class UserInfo(BaseModel):
    username: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


class ServerConfig(BaseModel):
    """A registered Git hosting endpoint, identity is the normalized base_url."""
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    provider: ProviderKind
    base_url: str = Field(..., min_length=1, max_length=500)
    is_default: bool = False
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _validate_name(v, required=True)

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        v = _validate_url(v, required=True)
        if not v.startswith(('http://', 'https://')):
            raise ValueError('Server base URL must start with http:// or https://')
        return v


class ServerAuthStatus(BaseModel):
    server_id: str
    status: AuthStatus = AuthStatus.UNKNOWN
    last_check: Optional[datetime] = None
    error: Optional[str] = None
    user_info: Optional[UserInfo] = None


class ServerValidationResult(BaseModel):
    """Outcome of an authentication probe against a provider."""
    is_valid: bool
    can_connect: bool
    auth_status: AuthStatus = AuthStatus.UNKNOWN
    error: Optional[str] = None
    user_info: Optional[UserInfo] = None

    @classmethod
    def invalid(cls, error: str, can_connect: bool = False) -> 'ServerValidationResult':
        return cls(is_valid=False, can_connect=can_connect, auth_status=AuthStatus.FAILED, error=error)


# =============================================================================
# Repositories
# =============================================================================


class RepositoryPermissions(BaseModel):
    developer: PermissionLevel = PermissionLevel.NONE
    devops: PermissionLevel = PermissionLevel.NONE
    operations: PermissionLevel = PermissionLevel.NONE

    @classmethod
    def for_access(cls, has_access: bool) -> 'RepositoryPermissions':
        """Default role mapping derived from a repository access check"""
        if has_access:
            return cls(
                developer=PermissionLevel.READ_ONLY,
                devops=PermissionLevel.FULL,
                operations=PermissionLevel.READ_ONLY,
            )
        return cls()


class Repository(BaseModel):
    """Local registry entry for a repository, independent of remote existence."""
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    url: str = Field(..., min_length=1, max_length=500)
    branch: str = Field(default='main', min_length=1, max_length=100)
    description: str = ''
    permissions: RepositoryPermissions = Field(default_factory=RepositoryPermissions)
    server_id: str
    server_name: Optional[str] = None
    auth_status: AuthStatus = AuthStatus.UNKNOWN
    last_auth_check: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _validate_name(v, required=True)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        return _validate_url(v, required=True)

    @field_validator('branch')
    @classmethod
    def validate_branch(cls, v: str) -> str:
        return validate_branch_name(v, required=True)


class RepositoryAccessStatus(BaseModel):
    repository_url: str
    server_id: str
    has_access: bool
    permissions: RepositoryPermissions
    last_check: datetime = Field(default_factory=utcnow)
    error: Optional[str] = None


class RepositoryValidationResult(BaseModel):
    is_valid: bool
    can_connect: bool
    requires_auth: bool
    auth_status: AuthStatus = AuthStatus.UNKNOWN
    error: Optional[str] = None


class CreateRepositoryConfig(BaseModel):
    """Parameters for creating a remote repository."""
    name: str = Field(..., min_length=1, max_length=100)
    owner: Optional[str] = None
    project_key: Optional[str] = None
    url: Optional[str] = None
    description: str = ''
    is_private: bool = False
    auto_init: bool = False
    default_branch: Optional[str] = None
    gitignore_template: Optional[str] = None
    license_template: Optional[str] = None

    @field_validator('name')
    @classmethod
    def validate_repo_name(cls, v: str) -> str:
        v = v.strip()
        if not re.match(r'^[A-Za-z0-9._ -]+$', v):
            raise ValueError('Repository name contains invalid characters')
        return v

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        return _validate_url(v, required=False)

    @field_validator('default_branch')
    @classmethod
    def validate_branch(cls, v: Optional[str]) -> Optional[str]:
        return validate_branch_name(v, required=False)


class RepositoryDescriptor(BaseModel):
    """Provider-neutral description of a remote repository."""
    name: str
    owner: str
    full_name: str
    clone_url: Optional[str] = None
    ssh_url: Optional[str] = None
    html_url: Optional[str] = None
    default_branch: Optional[str] = None
    is_private: bool = False
    description: str = ''


# =============================================================================
# Results
# =============================================================================


class OperationResult(BaseModel):
    """Uniform return of every mutating operation."""
    success: bool
    message: str = ''
    data: Optional[Any] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def ok(cls, message: str, data: Any = None) -> 'OperationResult':
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: str, message: Optional[str] = None) -> 'OperationResult':
        return cls(success=False, message=message or error, error=error)


class MergeConflictReport(BaseModel):
    """Result of one dry-run merge, never persisted."""
    has_conflicts: bool
    conflicts: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class WorkingCopyStatus(BaseModel):
    branch: Optional[str] = None
    is_clean: bool = True
    is_merging: bool = False
    staged: List[str] = Field(default_factory=list)
    modified: List[str] = Field(default_factory=list)
    untracked: List[str] = Field(default_factory=list)
    conflicted: List[str] = Field(default_factory=list)
    ahead: int = 0
    behind: int = 0


class CommitInfo(BaseModel):
    sha: str
    message: str
    author_name: str
    author_email: str
    date: datetime


class FileChange(BaseModel):
    path: str
    status: Literal['added', 'modified', 'deleted', 'renamed', 'unknown'] = 'modified'
    additions: int = 0
    deletions: int = 0


class DiffResult(BaseModel):
    files: List[FileChange] = Field(default_factory=list)
    total_additions: int = 0
    total_deletions: int = 0


class EnvironmentFailure(BaseModel):
    """Per-environment failure reported by the bootstrapper"""
    environment: str
    error: str


class EnvironmentBranchesResult(BaseModel):
    success: bool
    created_branches: List[str] = Field(default_factory=list)
    errors: List[EnvironmentFailure] = Field(default_factory=list)


class GitOpsStructureOptions(BaseModel):
    product: str = Field(..., min_length=1, max_length=100)
    environments: List[str] = Field(default_factory=list)
    generate_application_set: bool = True

    @field_validator('product')
    @classmethod
    def validate_product(cls, v: str) -> str:
        v = v.strip()
        if not re.match(r'^[a-zA-Z0-9_.-]+$', v) or v in ('.', '..'):
            raise ValueError('Product name contains invalid characters')
        return v
