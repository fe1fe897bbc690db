"""Shared fixtures: in-memory database, fake Aidbox server and an authenticated client."""

import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("LLM_MOCK", "true")

import json
import uuid
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from emr_backend.database.connection import db_manager
from emr_backend.services.audit_service import audit_service
from emr_backend.services.fhir_client import AidboxClient, get_fhir_client
from emr_backend.services.smart_auth import SmartClient, get_smart_client
from emr_backend.services.ai import MockProvider, llm_rate_limiter
from emr_backend.api.ai import get_scribe_provider
from main import app


def _reference_matches(value: Optional[Dict], expected: str) -> bool:
    return bool(value) and value.get("reference") == expected


def _codings(concept: Optional[Dict]) -> List[Dict]:
    return (concept or {}).get("coding") or []


def _category_matches(resource: Dict, code: str) -> bool:
    categories = resource.get("category") or []
    if isinstance(categories, dict):
        categories = [categories]
    return any(c.get("code") == code for cat in categories for c in _codings(cat))


def _token_matches(concept: Optional[Dict], value: str) -> bool:
    system, _, code = value.rpartition("|")
    return any(
        c.get("code") == code and (not system or c.get("system") == system)
        for c in _codings(concept)
    )


# Search parameters the fake server understands; anything else is ignored
SEARCH_FILTERS: Dict[str, Callable[[Dict, str], bool]] = {
    "subject": lambda r, v: _reference_matches(r.get("subject"), v),
    "patient": lambda r, v: _reference_matches(r.get("patient"), v) or _reference_matches(r.get("subject"), v),
    "encounter": lambda r, v: _reference_matches(r.get("encounter"), v),
    "category": _category_matches,
    "status": lambda r, v: r.get("status") == v,
    "clinical-status": lambda r, v: any(c.get("code") == v for c in _codings(r.get("clinicalStatus"))),
    "class": lambda r, v: (r.get("class") or {}).get("code") == v,
    "code": lambda r, v: _token_matches(r.get("code"), v),
}


class FakeAidbox:
    """
    Minimal in-memory FHIR server behind httpx.MockTransport.

    Stores resources per type, records every request, and can be told to
    fail a path with a given status and OperationOutcome.
    """

    def __init__(self):
        self.resources: Dict[str, Dict[str, Dict]] = {}
        self.requests: List[httpx.Request] = []
        self.failures: Dict[str, httpx.Response] = {}

    def add(self, resource: Dict[str, Any]) -> Dict[str, Any]:
        resource = dict(resource)
        resource.setdefault("id", uuid.uuid4().hex[:12])
        self.resources.setdefault(resource["resourceType"], {})[resource["id"]] = resource
        return resource

    def fail(self, path: str, status_code: int, diagnostics: str = "upstream failure"):
        outcome = {
            "resourceType": "OperationOutcome",
            "issue": [{"severity": "error", "code": "processing", "diagnostics": diagnostics}],
        }
        self.failures[path] = httpx.Response(status_code, json=outcome)

    def requests_for(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def _bundle(self, resources: List[Dict]) -> Dict:
        return {
            "resourceType": "Bundle",
            "type": "searchset",
            "total": len(resources),
            "entry": [{"resource": r} for r in resources],
        }

    def _not_found(self, path: str) -> httpx.Response:
        return httpx.Response(404, json={
            "resourceType": "OperationOutcome",
            "issue": [{"severity": "error", "code": "not-found", "diagnostics": f"{path} not found"}],
        })

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.failures:
            return self.failures[path]

        parts = [p for p in path.split("/") if p]
        resource_type = parts[0] if parts else ""
        store = self.resources.setdefault(resource_type, {})

        if len(parts) == 1:
            if request.method == "GET":
                matches = list(store.values())
                for name, value in request.url.params.multi_items():
                    check = SEARCH_FILTERS.get(name)
                    if check:
                        matches = [r for r in matches if check(r, value)]
                return httpx.Response(200, json=self._bundle(matches))
            if request.method == "POST":
                created = self.add(json.loads(request.content))
                return httpx.Response(201, json=created)

        if len(parts) == 2:
            resource_id = parts[1]
            if request.method == "GET":
                if resource_id not in store:
                    return self._not_found(path)
                return httpx.Response(200, json=store[resource_id])
            if request.method == "PUT":
                store[resource_id] = json.loads(request.content)
                return httpx.Response(200, json=store[resource_id])
            if request.method == "DELETE":
                if resource_id not in store:
                    return self._not_found(path)
                del store[resource_id]
                return httpx.Response(204)

        return self._not_found(path)


class FakeSmartServer:
    """Discovery and token endpoints of an external EHR authorization server"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.configuration = {
            "authorization_endpoint": "https://ehr.example.com/oauth2/authorize",
            "token_endpoint": "https://ehr.example.com/oauth2/token",
        }
        self.token_response = {
            "access_token": "ehr-access-token",
            "refresh_token": "ehr-refresh-token",
            "token_type": "Bearer",
            "expires_in": 3600,
            "scope": "launch/patient openid fhirUser",
            "patient": "ehr-patient-1",
        }
        self.token_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/.well-known/smart-configuration"):
            return httpx.Response(200, json=self.configuration)
        if request.url.path.endswith("/token"):
            return httpx.Response(self.token_status, json=self.token_response)
        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def aidbox():
    """Fake FHIR server."""
    return FakeAidbox()


@pytest.fixture
def smart_server():
    """Fake SMART authorization server."""
    return FakeSmartServer()


@pytest.fixture
def fhir(aidbox):
    """AidboxClient wired to the fake FHIR server."""
    return AidboxClient(
        "http://aidbox.test", "client", "secret",
        transport=httpx.MockTransport(aidbox.handler),
    )


@pytest.fixture
def db():
    """Fresh in-memory database seeded with the admin user and default tenant."""
    db_manager.close()
    db_manager.init_database("sqlite://")
    session = db_manager.get_session()
    yield session
    session.close()
    db_manager.close()


@pytest.fixture
def client(db, fhir, smart_server):
    """Test client with the FHIR, SMART and AI dependencies swapped for fakes."""
    audit_service.clear()
    llm_rate_limiter.reset()

    app.dependency_overrides = {}
    app.dependency_overrides[get_fhir_client] = lambda: fhir
    app.dependency_overrides[get_smart_client] = lambda: SmartClient(
        transport=httpx.MockTransport(smart_server.handler)
    )
    app.dependency_overrides[get_scribe_provider] = lambda: MockProvider()

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def admin_token(client):
    """Bearer token for the seeded admin account."""
    response = client.post("/api/auth/login", json={"username": "admin", "password": "admin123"})
    assert response.status_code == 200
    return response.json()["access_token"]


@pytest.fixture
def auth_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}
