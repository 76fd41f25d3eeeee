"""
Shared pytest fixtures for the GitOps orchestration tests.

Fixtures provided:
- key_path: Fernet key file inside the test's tmp dir
- db: DatabaseManager on a temporary SQLite file
- vault: CredentialVault over db/key_path
- git: Helper running the real git CLI with a fixed identity
- bare_remote: Empty bare repository usable as a remote
- seeded_remote: Bare repository with one commit on main

Tests that drive the real git binary are skipped when git is not installed.
"""

import os
import shutil
import subprocess
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from database import DatabaseManager
from security.credential_vault import CredentialVault

GIT_AVAILABLE = shutil.which("git") is not None

_GIT_ENV = {
    'GIT_AUTHOR_NAME': 'Test User',
    'GIT_AUTHOR_EMAIL': 'test@example.com',
    'GIT_COMMITTER_NAME': 'Test User',
    'GIT_COMMITTER_EMAIL': 'test@example.com',
    'GIT_TERMINAL_PROMPT': '0',
}


def pytest_collection_modifyitems(config, items):
    """Skip tests marked requires_git when the git binary is missing"""
    if GIT_AVAILABLE:
        return
    skip_git = pytest.mark.skip(reason="git is not installed")
    for item in items:
        if "requires_git" in item.keywords:
            item.add_marker(skip_git)


def run_git(cwd, *args) -> str:
    """Run git and return stdout, failing the test on a non-zero exit"""
    result = subprocess.run(
        ['git', *args],
        cwd=str(cwd),
        env={**os.environ, **_GIT_ENV},
        capture_output=True,
        text=True,
    )
    assert result.returncode == 0, f"git {' '.join(args)} failed: {result.stderr}"
    return result.stdout


@pytest.fixture
def key_path(tmp_path):
    return str(tmp_path / 'encryption.key')


@pytest.fixture
def db(tmp_path):
    """Temporary SQLite database, discarded with tmp_path"""
    manager = DatabaseManager(db_path=str(tmp_path / 'data' / 'gitops.db'))
    yield manager
    manager.engine.dispose()


@pytest.fixture
def vault(db, key_path):
    return CredentialVault(db, key_path=key_path)


@pytest.fixture
def git():
    return run_git


@pytest.fixture
def bare_remote(tmp_path):
    """Empty bare repository whose HEAD points at main"""
    path = tmp_path / 'remote.git'
    run_git(tmp_path, 'init', '--bare', str(path))
    run_git(path, 'symbolic-ref', 'HEAD', 'refs/heads/main')
    return path


@pytest.fixture
def seeded_remote(tmp_path, bare_remote):
    """Bare repository with README.md committed on main"""
    seed = tmp_path / 'seed'
    run_git(tmp_path, 'clone', str(bare_remote), str(seed))
    run_git(seed, 'symbolic-ref', 'HEAD', 'refs/heads/main')
    (seed / 'README.md').write_text('# seed\n')
    run_git(seed, 'add', 'README.md')
    run_git(seed, 'commit', '-m', 'Initial commit')
    run_git(seed, 'push', 'origin', 'main')
    return bare_remote
