"""
Centralized path configuration for the GitOps orchestration layer
Ensures all modules use consistent data, key and workspace locations
"""

import os

# Base path for everything persisted by this subsystem
DATA_DIR = os.getenv('GITOPS_DATA_DIR', os.path.join(os.path.expanduser('~'), '.gitops-orchestrator'))

# SQLite database holding servers, repositories and encrypted credentials
DATABASE_PATH = os.getenv('GITOPS_DATABASE_PATH', os.path.join(DATA_DIR, 'gitops.db'))

# Fernet key used by the credential vault
KEY_PATH = os.getenv('GITOPS_KEY_PATH', os.path.join(DATA_DIR, 'encryption.key'))

# Temporary clones (environment bootstrap) are created below this directory
WORKSPACE_DIR = os.getenv('GITOPS_WORKSPACE_DIR', os.path.join(DATA_DIR, 'workspaces'))

LOG_DIR = os.path.join(DATA_DIR, 'logs')


def ensure_data_dirs():
    """Create data directories if they don't exist"""
    for directory in [DATA_DIR, WORKSPACE_DIR]:
        os.makedirs(directory, exist_ok=True)
        try:
            os.chmod(directory, 0o700)
        except OSError:
            pass  # May not have permission in some environments
