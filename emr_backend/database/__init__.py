"""
Database Package
Provides database models, connection management, and session handling
"""
from emr_backend.database.connection import get_db, db_manager
from emr_backend.database.models import (
    Base, User, UserRole, Tenant, EhrVendor, EhrConnection, EhrUserToken, MedicationCatalog
)


def init_db():
    """Initialize database and seed initial data"""
    db_manager.init_database()


__all__ = [
    'get_db', 'db_manager', 'init_db',
    'Base', 'User', 'UserRole', 'Tenant', 'EhrVendor', 'EhrConnection', 'EhrUserToken',
    'MedicationCatalog'
]
