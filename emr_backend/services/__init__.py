# Services Package
from .fhir_client import AidboxClient, FhirError
from .drug_interaction_service import DrugInteractionService
from .audit_service import AuditService
from .auth_service import AuthService
from .smart_auth import SmartClient, SmartAuthError
from .medication_catalog_service import MedicationCatalogService

__all__ = [
    'AidboxClient',
    'FhirError',
    'DrugInteractionService',
    'AuditService',
    'AuthService',
    'SmartClient',
    'SmartAuthError',
    'MedicationCatalogService',
]
