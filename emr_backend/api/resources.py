"""
FHIR Resource API Routes
One list/create route pair per resource type, plus item routes for the resources
edited directly from the chart. Each route is a thin pass-through to Aidbox.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse

from emr_backend.services.fhir_client import AidboxClient, bundle_resources, bundle_total, get_fhir_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["FHIR Resources"])

DEFAULT_COUNT = 100


@dataclass
class ResourceRoute:
    """How a URL path maps onto a FHIR resource type"""
    path: str
    resource_type: str
    # query param -> FHIR search param, value passed through unchanged
    params: Dict[str, str] = field(default_factory=dict)
    # FHIR search param that receives `Patient/{patient}` / `Encounter/{encounter}`
    patient_param: Optional[str] = None
    encounter_param: Optional[str] = None
    defaults: Dict[str, Any] = field(default_factory=dict)
    creatable: bool = True
    item_routes: bool = False


def _same(*names: str) -> Dict[str, str]:
    return {name: name for name in names}


RESOURCE_ROUTES = [
    ResourceRoute("accounts", "Account", _same("status", "type"),
                  patient_param="subject", defaults={'status': 'active'}),
    ResourceRoute("allergy-intolerances", "AllergyIntolerance",
                  _same("clinical-status", "category", "criticality"), patient_param="patient"),
    ResourceRoute("audit-events", "AuditEvent", _same("agent", "type", "date", "outcome"),
                  patient_param="patient", creatable=False),
    ResourceRoute("care-plans", "CarePlan", _same("status", "category"),
                  patient_param="subject", encounter_param="encounter",
                  defaults={'status': 'active', 'intent': 'plan'}),
    ResourceRoute("care-teams", "CareTeam", _same("status"),
                  patient_param="subject", encounter_param="encounter", defaults={'status': 'active'}),
    ResourceRoute("claims", "Claim", _same("status", "use"),
                  patient_param="patient", encounter_param="encounter",
                  defaults={'status': 'active', 'use': 'claim'}),
    ResourceRoute("clinical-impressions", "ClinicalImpression", _same("status"),
                  patient_param="subject", encounter_param="encounter", defaults={'status': 'completed'}),
    ResourceRoute("conditions", "Condition", _same("category", "clinical-status"),
                  patient_param="subject", encounter_param="encounter", item_routes=True),
    ResourceRoute("consents", "Consent", _same("status", "category"),
                  patient_param="patient", defaults={'status': 'active'}),
    ResourceRoute("coverage", "Coverage", _same("beneficiary", "status", "type", "payor"),
                  patient_param="patient", defaults={'status': 'active'}),
    ResourceRoute("devices", "Device", _same("type", "status", "identifier"),
                  patient_param="patient", creatable=False),
    ResourceRoute("diagnostic-reports", "DiagnosticReport", _same("category", "status", "code"),
                  patient_param="subject", encounter_param="encounter", defaults={'status': 'final'}),
    ResourceRoute("documents", "DocumentReference", _same("status", "type", "category"),
                  patient_param="subject", encounter_param="context", defaults={'status': 'current'}),
    ResourceRoute("encounters", "Encounter", _same("status", "class", "date"),
                  patient_param="subject", item_routes=True),
    ResourceRoute("explanation-of-benefits", "ExplanationOfBenefit", _same("claim", "status"),
                  patient_param="patient", creatable=False),
    ResourceRoute("family-member-histories", "FamilyMemberHistory", _same("status", "relationship"),
                  patient_param="patient", defaults={'status': 'completed'}),
    ResourceRoute("goals", "Goal", _same("lifecycle-status", "category"),
                  patient_param="subject", defaults={'lifecycleStatus': 'active'}),
    ResourceRoute("healthcare-services", "HealthcareService",
                  _same("name", "category", "organization", "location", "active")),
    ResourceRoute("imaging-studies", "ImagingStudy", _same("status", "modality", "started"),
                  patient_param="subject", encounter_param="encounter", creatable=False),
    ResourceRoute("immunizations", "Immunization", _same("status", "date"),
                  patient_param="patient", defaults={'status': 'completed'}),
    ResourceRoute("invoices", "Invoice", _same("status", "type", "date"),
                  patient_param="subject", defaults={'status': 'issued'}),
    ResourceRoute("locations", "Location", _same("name", "type", "organization", "status"),
                  defaults={'status': 'active'}),
    ResourceRoute("medication-administrations", "MedicationAdministration",
                  _same("status", "medication", "effective-time"),
                  patient_param="subject", encounter_param="context", defaults={'status': 'completed'}),
    ResourceRoute("medication-requests", "MedicationRequest", _same("status", "intent", "medication"),
                  patient_param="subject", encounter_param="encounter",
                  defaults={'status': 'active', 'intent': 'order'}),
    ResourceRoute("observations", "Observation", _same("category", "code", "status", "date"),
                  patient_param="subject", encounter_param="encounter",
                  defaults={'status': 'final'}, item_routes=True),
    ResourceRoute("organizations", "Organization", _same("name", "type", "identifier", "active"),
                  creatable=False),
    ResourceRoute("patients", "Patient", _same("name", "identifier", "birthdate", "gender", "_sort"),
                  defaults={'active': True}, item_routes=True),
    ResourceRoute("payment-notices", "PaymentNotice", _same("status", "payment-status", "created"),
                  creatable=False),
    ResourceRoute("practitioner-roles", "PractitionerRole",
                  _same("practitioner", "organization", "location", "role", "specialty", "active"),
                  creatable=False),
    ResourceRoute("practitioners", "Practitioner", _same("name", "identifier", "active"),
                  defaults={'active': True}, item_routes=True),
    ResourceRoute("procedures", "Procedure", _same("status", "date"),
                  patient_param="subject", encounter_param="encounter", defaults={'status': 'completed'}),
    ResourceRoute("provenances", "Provenance", _same("target", "agent", "recorded"), creatable=False),
    ResourceRoute("questionnaire-responses", "QuestionnaireResponse", _same("questionnaire", "status"),
                  patient_param="subject", encounter_param="encounter", defaults={'status': 'completed'}),
    ResourceRoute("risk-assessments", "RiskAssessment", _same("condition", "method"),
                  patient_param="subject", encounter_param="encounter", defaults={'status': 'final'}),
    ResourceRoute("schedules", "Schedule", _same("actor", "date", "service-type", "specialty", "active")),
    ResourceRoute("service-requests", "ServiceRequest", _same("status", "category", "intent", "priority"),
                  patient_param="subject", encounter_param="encounter",
                  defaults={'status': 'active', 'intent': 'order'}),
    ResourceRoute("slots", "Slot", _same("schedule", "status", "start", "service-type"), creatable=False),
    ResourceRoute("tasks", "Task", _same("patient", "encounter", "owner", "requester", "status", "priority"),
                  defaults={'status': 'requested', 'intent': 'order'}),
    ResourceRoute("appointments", "Appointment", _same("practitioner", "status", "date", "service-type"),
                  patient_param="patient", defaults={'status': 'booked'}, item_routes=True),
]


def build_search_params(route: ResourceRoute, query: Dict[str, str]) -> Dict[str, Any]:
    """Translate the incoming query string into FHIR search parameters"""
    params: Dict[str, Any] = {}
    for name, fhir_name in route.params.items():
        if query.get(name):
            params[fhir_name] = query[name]
    if route.patient_param and query.get("patient"):
        params[route.patient_param] = f"Patient/{query['patient']}"
    if route.encounter_param and query.get("encounter"):
        params[route.encounter_param] = f"Encounter/{query['encounter']}"
    params["_count"] = query.get("_count") or DEFAULT_COUNT
    return params


def _register(route: ResourceRoute):
    resource_type = route.resource_type

    async def list_resources(request: Request, client: AidboxClient = Depends(get_fhir_client)):
        bundle = await client.search(resource_type, build_search_params(route, dict(request.query_params)))
        return {'success': True, 'data': bundle_resources(bundle), 'total': bundle_total(bundle)}

    list_resources.__doc__ = f"Search {resource_type} resources"
    router.add_api_route(f"/{route.path}", list_resources, methods=["GET"],
                         name=f"list_{route.path}", summary=f"List {resource_type}")

    if route.creatable:
        async def create_resource(body: Dict[str, Any] = Body(...),
                                  client: AidboxClient = Depends(get_fhir_client)):
            created = await client.create(resource_type, {**route.defaults, **body})
            logger.info(f"Created {resource_type}/{(created or {}).get('id')}")
            return JSONResponse(status_code=201, content={'success': True, 'data': created})

        router.add_api_route(f"/{route.path}", create_resource, methods=["POST"],
                             name=f"create_{route.path}", summary=f"Create {resource_type}")

    if route.item_routes:
        async def get_resource(resource_id: str, client: AidboxClient = Depends(get_fhir_client)):
            return {'success': True, 'data': await client.read(resource_type, resource_id)}

        async def update_resource(resource_id: str, body: Dict[str, Any] = Body(...),
                                  client: AidboxClient = Depends(get_fhir_client)):
            return {'success': True, 'data': await client.update(resource_type, resource_id, body)}

        async def delete_resource(resource_id: str, client: AidboxClient = Depends(get_fhir_client)):
            await client.delete(resource_type, resource_id)
            logger.info(f"Deleted {resource_type}/{resource_id}")
            return {'success': True, 'message': f"{resource_type} deleted"}

        item_path = f"/{route.path}/{{resource_id}}"
        router.add_api_route(item_path, get_resource, methods=["GET"], name=f"get_{route.path}")
        router.add_api_route(item_path, update_resource, methods=["PUT"], name=f"update_{route.path}")
        router.add_api_route(item_path, delete_resource, methods=["DELETE"], name=f"delete_{route.path}")


for _route in RESOURCE_ROUTES:
    _register(_route)
