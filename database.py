"""
Database models and operations for the GitOps orchestration layer
Uses SQLite for persistent storage of servers, repositories and encrypted credentials
"""

from datetime import datetime, timezone
from typing import Optional, List
from sqlalchemy import create_engine, Column, String, Boolean, DateTime, JSON, ForeignKey, Text, event
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
import os
import logging
import uuid

from config.paths import DATABASE_PATH
from models.git_models import (
    AuthStatus,
    Repository,
    RepositoryPermissions,
    ServerAuthStatus,
    ServerConfig,
    UserInfo,
)

logger = logging.getLogger(__name__)


def utcnow():
    """Helper to get timezone-aware UTC datetime for database defaults"""
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo, restore UTC on the way out"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


Base = declarative_base()


class GitServer(Base):
    """Git hosting server configuration plus its latest authentication status"""
    __tablename__ = "git_servers"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    provider = Column(String, nullable=False)  # 'gitea' | 'bitbucket'
    base_url = Column(String, nullable=False, unique=True)  # normalized, identity
    is_default = Column(Boolean, default=False)
    description = Column(Text, nullable=True)

    # Overwritten on every authentication attempt
    auth_status = Column(String, default=AuthStatus.UNKNOWN.value)
    last_auth_check = Column(DateTime, nullable=True)
    auth_error = Column(Text, nullable=True)
    auth_user_info = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class GitRepositoryRecord(Base):
    """Local repository registry entry"""
    __tablename__ = "git_repositories"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    branch = Column(String, nullable=False, default='main')
    description = Column(Text, default='')
    permissions = Column(JSON, nullable=False, default=dict)
    server_id = Column(String, ForeignKey("git_servers.id", ondelete="CASCADE"), nullable=False)
    auth_status = Column(String, default=AuthStatus.UNKNOWN.value)
    last_auth_check = Column(DateTime, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    extra_metadata = Column('metadata', JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class GitCredentialRecord(Base):
    """Encrypted credential blob keyed by namespaced id (server:<id>, repository:<id>)"""
    __tablename__ = "git_credentials"

    key = Column(String, primary_key=True)
    ciphertext = Column(Text, nullable=False)  # Fernet token of the JSON payload
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


def _server_to_model(row: GitServer) -> ServerConfig:
    return ServerConfig(
        id=row.id,
        name=row.name,
        provider=row.provider,
        base_url=row.base_url,
        is_default=bool(row.is_default),
        description=row.description,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def _auth_status_to_model(row: GitServer) -> ServerAuthStatus:
    return ServerAuthStatus(
        server_id=row.id,
        status=row.auth_status or AuthStatus.UNKNOWN.value,
        last_check=_as_utc(row.last_auth_check),
        error=row.auth_error,
        user_info=UserInfo(**row.auth_user_info) if row.auth_user_info else None,
    )


def _repository_to_model(row: GitRepositoryRecord) -> Repository:
    return Repository(
        id=row.id,
        name=row.name,
        url=row.url,
        branch=row.branch,
        description=row.description or '',
        permissions=RepositoryPermissions(**(row.permissions or {})),
        server_id=row.server_id,
        auth_status=row.auth_status or AuthStatus.UNKNOWN.value,
        last_auth_check=_as_utc(row.last_auth_check),
        tags=list(row.tags or []),
        metadata=dict(row.extra_metadata or {}),
    )


class DatabaseManager:
    """
    Database management and operations.

    One instance per database file. All methods open a short-lived session
    and return pydantic models, never attached ORM rows.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or DATABASE_PATH

        data_dir = os.path.dirname(self.db_path)
        if data_dir:
            os.makedirs(data_dir, exist_ok=True)
            try:
                os.chmod(data_dir, 0o700)
            except OSError as e:
                logger.warning(f"Could not set permissions on data directory {data_dir}: {e}")

        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={
                "check_same_thread": False,
                "timeout": 20
            },
            poolclass=StaticPool,
            echo=False
        )

        # SQLite only honours ON DELETE CASCADE with foreign keys enabled
        event.listen(self.engine, "connect", self._enable_foreign_keys)

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

        Base.metadata.create_all(bind=self.engine)

    @staticmethod
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    def get_session(self) -> Session:
        """Get a database session"""
        return self.SessionLocal()

    # Server Operations
    def get_servers(self) -> List[ServerConfig]:
        """Get all servers ordered by creation time"""
        with self.get_session() as session:
            rows = session.query(GitServer).order_by(GitServer.created_at).all()
            return [_server_to_model(row) for row in rows]

    def get_server(self, server_id: str) -> Optional[ServerConfig]:
        with self.get_session() as session:
            row = session.get(GitServer, server_id)
            return _server_to_model(row) if row else None

    def get_server_by_base_url(self, base_url: str) -> Optional[ServerConfig]:
        with self.get_session() as session:
            row = session.query(GitServer).filter_by(base_url=base_url).first()
            return _server_to_model(row) if row else None

    def upsert_server(self, config: ServerConfig) -> ServerConfig:
        """
        Insert or update a server keyed by its (already normalized) base_url.

        On update the id, provider and created_at are preserved. A config whose
        id names an existing server but whose base_url is new moves that server
        to the new URL.
        """
        with self.get_session() as session:
            try:
                row = session.query(GitServer).filter_by(base_url=config.base_url).first()
                if row is None and config.id:
                    row = session.get(GitServer, config.id)
                    if row is not None:
                        logger.info(f"Moving git server {row.name} from {row.base_url} to {config.base_url}")
                        row.base_url = config.base_url
                if row is None:
                    row = GitServer(
                        id=config.id or str(uuid.uuid4()),
                        name=config.name,
                        provider=config.provider.value,
                        base_url=config.base_url,
                        is_default=config.is_default,
                        description=config.description,
                    )
                    session.add(row)
                    action = "Added"
                else:
                    row.name = config.name
                    row.is_default = config.is_default
                    row.description = config.description
                    row.updated_at = utcnow()
                    action = "Updated"

                if config.is_default:
                    session.query(GitServer).filter(GitServer.id != row.id).update(
                        {GitServer.is_default: False}, synchronize_session=False
                    )

                session.commit()
                session.refresh(row)
                logger.info(f"{action} git server {row.name} ({row.base_url})")
                return _server_to_model(row)
            except Exception as e:
                session.rollback()
                logger.error(f"Failed to save git server {config.base_url}: {e}")
                raise

    def delete_server(self, server_id: str) -> bool:
        """Delete a server, its repositories and its credentials"""
        with self.get_session() as session:
            row = session.get(GitServer, server_id)
            if row is None:
                return False
            repo_ids = [
                repo_id for (repo_id,) in
                session.query(GitRepositoryRecord.id).filter_by(server_id=server_id).all()
            ]
            credential_keys = [f"server:{server_id}"] + [f"repository:{repo_id}" for repo_id in repo_ids]
            session.query(GitCredentialRecord).filter(
                GitCredentialRecord.key.in_(credential_keys)
            ).delete(synchronize_session=False)
            session.query(GitRepositoryRecord).filter_by(server_id=server_id).delete(synchronize_session=False)
            session.delete(row)
            session.commit()
            logger.info(f"Deleted git server {server_id}")
            return True

    def get_auth_status(self, server_id: str) -> Optional[ServerAuthStatus]:
        with self.get_session() as session:
            row = session.get(GitServer, server_id)
            return _auth_status_to_model(row) if row else None

    def update_auth_status(self, status: ServerAuthStatus) -> bool:
        with self.get_session() as session:
            row = session.get(GitServer, status.server_id)
            if row is None:
                return False
            row.auth_status = status.status.value
            row.last_auth_check = status.last_check or utcnow()
            row.auth_error = status.error
            row.auth_user_info = status.user_info.model_dump() if status.user_info else None
            session.commit()
            return True

    # Repository Operations
    def get_repositories(self) -> List[Repository]:
        with self.get_session() as session:
            rows = session.query(GitRepositoryRecord).order_by(GitRepositoryRecord.created_at).all()
            return [_repository_to_model(row) for row in rows]

    def get_repository(self, repository_id: str) -> Optional[Repository]:
        with self.get_session() as session:
            row = session.get(GitRepositoryRecord, repository_id)
            return _repository_to_model(row) if row else None

    def get_repository_by_url(self, url: str) -> Optional[Repository]:
        with self.get_session() as session:
            row = session.query(GitRepositoryRecord).filter_by(url=url).first()
            return _repository_to_model(row) if row else None

    def save_repository(self, repository: Repository) -> Repository:
        """Insert or update a repository keyed by id"""
        with self.get_session() as session:
            try:
                row = session.get(GitRepositoryRecord, repository.id) if repository.id else None
                if row is None:
                    row = GitRepositoryRecord(id=repository.id or str(uuid.uuid4()))
                    session.add(row)
                row.name = repository.name
                row.url = repository.url
                row.branch = repository.branch
                row.description = repository.description
                row.permissions = repository.permissions.model_dump(mode='json')
                row.server_id = repository.server_id
                row.auth_status = repository.auth_status.value
                row.last_auth_check = repository.last_auth_check
                row.tags = list(repository.tags)
                row.extra_metadata = dict(repository.metadata)
                session.commit()
                session.refresh(row)
                logger.info(f"Saved repository {row.name} ({row.id})")
                return _repository_to_model(row)
            except Exception as e:
                session.rollback()
                logger.error(f"Failed to save repository {repository.name}: {e}")
                raise

    def delete_repository(self, repository_id: str) -> bool:
        with self.get_session() as session:
            row = session.get(GitRepositoryRecord, repository_id)
            if row is None:
                return False
            session.delete(row)
            session.query(GitCredentialRecord).filter(
                GitCredentialRecord.key == f"repository:{repository_id}"
            ).delete(synchronize_session=False)
            session.commit()
            logger.info(f"Deleted repository {repository_id}")
            return True

    # Credential Operations (ciphertext only, encryption lives in the vault)
    def put_credential(self, key: str, ciphertext: str) -> None:
        with self.get_session() as session:
            row = session.get(GitCredentialRecord, key)
            if row is None:
                session.add(GitCredentialRecord(key=key, ciphertext=ciphertext))
            else:
                row.ciphertext = ciphertext
                row.updated_at = utcnow()
            session.commit()

    def get_credential(self, key: str) -> Optional[str]:
        with self.get_session() as session:
            row = session.get(GitCredentialRecord, key)
            return row.ciphertext if row else None

    def delete_credential(self, key: str) -> bool:
        with self.get_session() as session:
            row = session.get(GitCredentialRecord, key)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True
