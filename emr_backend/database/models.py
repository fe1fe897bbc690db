"""
EMR Gateway Database Models
SQLAlchemy models for the local administrative entities.
Clinical data lives on the FHIR server; only users, EHR OAuth
configuration and the formulary cache are stored here.
"""
from datetime import datetime
import uuid

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean,
    ForeignKey, Enum as SQLEnum, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship
import enum

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class UserRole(enum.Enum):
    ADMIN = "admin"
    PHYSICIAN = "physician"
    NURSE = "nurse"
    PHARMACIST = "pharmacist"
    STAFF = "staff"


class EhrVendor(enum.Enum):
    EPIC = "EPIC"
    ECLINICALWORKS = "ECLINICALWORKS"


class User(Base):
    """Clinical and administrative staff"""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(100), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(100), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.STAFF)
    is_active = Column(Boolean, default=True)
    last_login = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    ehr_tokens = relationship("EhrUserToken", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_user_role', 'role'),
    )


class Tenant(Base):
    """Organization that owns EHR connections"""
    __tablename__ = 'tenants'

    id = Column(String(36), primary_key=True, default=_uuid)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    connections = relationship("EhrConnection", back_populates="tenant")


class EhrConnection(Base):
    """OAuth client configuration for an external EHR (SMART-on-FHIR)"""
    __tablename__ = 'ehr_connections'

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), ForeignKey('tenants.id'), nullable=False)
    vendor = Column(SQLEnum(EhrVendor), nullable=False)
    issuer = Column(String(500))  # defaults to fhir_base_url when unset
    fhir_base_url = Column(String(500), nullable=False)
    client_id = Column(String(200), nullable=False)
    client_secret = Column(String(500))
    scopes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="connections")
    tokens = relationship("EhrUserToken", back_populates="connection", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_ehr_connection_tenant', 'tenant_id'),
    )

    @property
    def effective_issuer(self) -> str:
        return (self.issuer or self.fhir_base_url).rstrip('/')

    def to_dict(self) -> dict:
        # client_secret is never echoed back
        return {
            'id': self.id,
            'tenantId': self.tenant_id,
            'tenant': {'id': self.tenant.id, 'slug': self.tenant.slug, 'name': self.tenant.name}
            if self.tenant else None,
            'vendor': self.vendor.value,
            'issuer': self.issuer,
            'fhirBaseUrl': self.fhir_base_url,
            'clientId': self.client_id,
            'hasClientSecret': bool(self.client_secret),
            'scopes': self.scopes,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }


class EhrUserToken(Base):
    """Tokens obtained for a user through an EHR connection"""
    __tablename__ = 'ehr_user_tokens'

    id = Column(Integer, primary_key=True, autoincrement=True)
    connection_id = Column(String(36), ForeignKey('ehr_connections.id'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    id_token = Column(Text)
    token_type = Column(String(50))
    scope = Column(Text)
    patient = Column(String(200))  # launch context patient id, when granted
    expires_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    connection = relationship("EhrConnection", back_populates="tokens")
    user = relationship("User", back_populates="ehr_tokens")

    __table_args__ = (
        UniqueConstraint('connection_id', 'user_id', name='uq_ehr_token_connection_user'),
    )

    def is_valid(self, now: datetime = None) -> bool:
        """A token without an expiry is treated as valid"""
        now = now or datetime.utcnow()
        return self.expires_at is None or self.expires_at > now


class MedicationCatalog(Base):
    """Local formulary cache keyed by NDC code"""
    __tablename__ = 'medication_catalog'

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(300), nullable=False)
    ndc_code = Column(String(50), unique=True, nullable=False)
    rx_cui = Column(String(50))
    form = Column(String(100))
    strength = Column(String(100))
    fhir_medication_id = Column(String(100))
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_med_catalog_name', 'name'),
    )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'ndcCode': self.ndc_code,
            'rxCui': self.rx_cui,
            'form': self.form,
            'strength': self.strength,
            'fhirMedicationId': self.fhir_medication_id,
            'active': self.active,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }
