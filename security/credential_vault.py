"""
Credential vault for server and repository secrets.

Credentials are serialized to JSON, encrypted with Fernet (utils.encryption)
and persisted through the DatabaseManager. Keys are namespaced so a server and
a repository with the same id never share an entry:

    server:<server_id>
    repository:<repository_id>
"""
import logging
from typing import Optional, Union

from models.git_models import (
    SshKeyCredentials,
    TokenCredentials,
    UsernamePasswordCredentials,
    parse_credentials,
)
from utils.encryption import (
    EncryptionUnavailable,
    decrypt_secret,
    encrypt_secret,
    is_encryption_available,
)

logger = logging.getLogger(__name__)

Credentials = Union[TokenCredentials, UsernamePasswordCredentials, SshKeyCredentials]


def server_key(server_id: str) -> str:
    return f"server:{server_id}"


def repository_key(repository_id: str) -> str:
    return f"repository:{repository_id}"


class CredentialVault:
    """Encrypted-at-rest credential store."""

    def __init__(self, db, key_path: Optional[str] = None):
        """
        Args:
            db: DatabaseManager used for persistence
            key_path: Fernet key file, defaults to config.paths.KEY_PATH
        """
        self.db = db
        self.key_path = key_path

    def store(self, key: str, credentials: Credentials) -> None:
        """
        Encrypt and persist credentials.

        Raises:
            EncryptionUnavailable: If the encryption key can't be loaded or created
        """
        if not is_encryption_available(self.key_path):
            raise EncryptionUnavailable("Encryption is not available on this system")

        payload = credentials.model_dump_json()
        self.db.put_credential(key, encrypt_secret(payload, self.key_path))
        logger.debug(f"Stored credentials for {key}")

    def get(self, key: str) -> Optional[Credentials]:
        """
        Load and decrypt credentials.

        Returns:
            Typed credentials, or None if absent or unreadable
        """
        ciphertext = self.db.get_credential(key)
        if not ciphertext:
            return None

        try:
            return parse_credentials(decrypt_secret(ciphertext, self.key_path))
        except (ValueError, EncryptionUnavailable) as e:
            # pydantic.ValidationError is a ValueError
            logger.warning(f"Failed to decrypt credentials for {key}: {e}")
            return None

    def delete(self, key: str) -> bool:
        return self.db.delete_credential(key)

    def exists(self, key: str) -> bool:
        return self.db.get_credential(key) is not None
