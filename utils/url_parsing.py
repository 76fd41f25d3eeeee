"""
Git remote URL helpers

Parses the URL shapes accepted for repositories and servers:
    https://git.example.com/org/repo.git
    http://localhost:3000/org/repo
    ssh://git@git.example.com:2222/org/repo.git
    git@git.example.com:org/repo.git   (scp-style)
"""

import re
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlparse

# git@host:path (no scheme, colon before the path)
_SCP_PATTERN = re.compile(r'^(?:(?P<user>[^@/\s]+)@)?(?P<host>[^:/\s]+):(?P<path>(?!/).*)$')

_DEFAULT_PORTS = {'http': 80, 'https': 443, 'ssh': 22}


@dataclass(frozen=True)
class RemoteUrl:
    """Components of a git remote URL"""
    scheme: str
    host: str
    port: Optional[int]
    path: str

    @property
    def is_http(self) -> bool:
        return self.scheme in ('http', 'https')

    @property
    def origin(self) -> str:
        """scheme://host[:port] with default ports dropped"""
        netloc = self.host
        if self.port and self.port != _DEFAULT_PORTS.get(self.scheme):
            netloc = f"{netloc}:{self.port}"
        return f"{self.scheme}://{netloc}"


def parse_remote_url(url: str) -> RemoteUrl:
    """
    Parse a git remote URL into scheme, host, port and path.

    Args:
        url: Repository or server URL

    Returns:
        RemoteUrl with lower-cased scheme and host

    Raises:
        ValueError: If the URL has no recognisable host
    """
    if url is None or not url.strip():
        raise ValueError("URL cannot be empty")
    url = url.strip()

    if '://' not in url:
        match = _SCP_PATTERN.match(url)
        if not match:
            raise ValueError(f"Unrecognised git URL: {url}")
        return RemoteUrl(
            scheme='ssh',
            host=match.group('host').lower(),
            port=None,
            path='/' + match.group('path').lstrip('/'),
        )

    parsed = urlparse(url)
    if not parsed.hostname:
        raise ValueError(f"URL has no host: {url}")

    try:
        port = parsed.port
    except ValueError:
        raise ValueError(f"URL has an invalid port: {url}")

    return RemoteUrl(
        scheme=parsed.scheme.lower(),
        host=parsed.hostname.lower(),
        port=port,
        path=parsed.path or '/',
    )


def normalize_base_url(url: str) -> str:
    """
    Normalize a server base URL to its identity form.

    Lower-cases scheme and host, drops default ports, userinfo, query and
    trailing slashes. A sub-path (server hosted under /git) is kept.

    Examples:
        HTTPS://Git.Example.com:443/ -> https://git.example.com
        http://localhost:3000/gitea/ -> http://localhost:3000/gitea
    """
    remote = parse_remote_url(url)
    if not remote.is_http:
        raise ValueError(f"Server base URL must use http or https: {url}")
    path = remote.path.rstrip('/')
    return remote.origin + path


def strip_git_suffix(name: str) -> str:
    """Remove a trailing .git from a repository name"""
    return name[:-4] if name.endswith('.git') else name


def repository_path_segments(repo_url: str, base_url: Optional[str] = None) -> list:
    """
    Path segments of a repository URL relative to the server base path.

    Args:
        repo_url: Repository URL
        base_url: Server base URL, its path prefix is removed when present

    Returns:
        List of non-empty path segments
    """
    path = parse_remote_url(repo_url).path
    if base_url:
        base_path = parse_remote_url(base_url).path.rstrip('/')
        if base_path and (path == base_path or path.startswith(base_path + '/')):
            path = path[len(base_path):]
    return [segment for segment in path.split('/') if segment]


def split_owner_and_name(repo_url: str, base_url: Optional[str] = None) -> Optional[Tuple[str, str]]:
    """
    Generic <owner>/<name> extraction from a repository URL.

    Returns:
        (owner, name) or None when the path doesn't have two segments
    """
    try:
        segments = repository_path_segments(repo_url, base_url)
    except ValueError:
        return None
    if len(segments) < 2:
        return None
    owner, name = segments[0], strip_git_suffix(segments[1])
    if not owner or not name:
        return None
    return owner, name
