"""
Database Configuration
Local administrative tables (users, tenants, EHR connections, medication catalog).
Clinical data never lands here; it lives on the FHIR server.
"""
import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from emr_backend.config import settings
from emr_backend.database.models import Base, Tenant, User, UserRole

logger = logging.getLogger(__name__)


def normalize_database_url(url: str) -> str:
    # Heroku-style URLs use the scheme SQLAlchemy dropped in 1.4
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


def _redacted(url: str) -> str:
    return url.rsplit("@", 1)[-1]


def build_engine(url: str) -> Engine:
    """Engine for the given URL; SQLite gets a single shared connection and FK enforcement"""
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=settings.SQL_ECHO,
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        echo=settings.SQL_ECHO,
    )


class DatabaseManager:
    """Owns the engine and session factory for the gateway's local store"""

    def __init__(self):
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None

    @property
    def initialized(self) -> bool:
        return self.engine is not None

    def init_db(self, database_url: str = None):
        """Create the engine and tables; a no-op once initialized"""
        if self.initialized:
            return

        url = normalize_database_url(database_url or settings.DATABASE_URL)
        self.engine = build_engine(url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)
        logger.info(f"Database initialized: {_redacted(url)}")

    def get_session(self) -> Session:
        if not self.initialized:
            self.init_db()
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session that commits on success and rolls back on error"""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self):
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self.SessionLocal = None

    def init_database(self, database_url: str = None):
        """Tables plus the seed admin account and default tenant"""
        self.init_db(database_url)
        with self.session_scope() as db:
            seed_admin_user(db)
            seed_default_tenant(db)


db_manager = DatabaseManager()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency for database sessions"""
    db = db_manager.get_session()
    try:
        yield db
    finally:
        db.close()


def seed_admin_user(db: Session):
    if db.query(User).filter(User.username == settings.ADMIN_USERNAME).first():
        return

    # Imported here: auth_service depends on this module for get_db
    from emr_backend.services.auth_service import auth_service

    db.add(User(
        username=settings.ADMIN_USERNAME,
        email=settings.ADMIN_EMAIL,
        password_hash=auth_service.hash_password(settings.ADMIN_PASSWORD),
        full_name="System Administrator",
        role=UserRole.ADMIN,
        is_active=True,
    ))
    db.flush()
    logger.info(f"Created default admin user (username: {settings.ADMIN_USERNAME})")


def seed_default_tenant(db: Session):
    slug = settings.DEFAULT_TENANT_SLUG
    if not db.query(Tenant).filter(Tenant.slug == slug).first():
        db.add(Tenant(slug=slug, name=settings.DEFAULT_TENANT_NAME))
        db.flush()
