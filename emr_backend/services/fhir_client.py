"""
Aidbox FHIR Client
Thin async REST client for the FHIR server that holds all clinical data.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from emr_backend.config import settings

logger = logging.getLogger(__name__)

FHIR_CONTENT_TYPE = "application/fhir+json"


class FhirError(Exception):
    """Raised when the FHIR server answers with a non-2xx status"""

    def __init__(self, status_code: int, message: str, outcome: Optional[Dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.outcome = outcome


def _outcome_message(payload: Any) -> Optional[str]:
    """Pull a human readable message out of an OperationOutcome"""
    if not isinstance(payload, dict):
        return None
    if payload.get("resourceType") != "OperationOutcome":
        return payload.get("message") or payload.get("error")
    for issue in payload.get("issue", []):
        text = issue.get("diagnostics") or (issue.get("details") or {}).get("text")
        if text:
            return text
    return None


def bundle_resources(bundle: Dict) -> List[Dict]:
    """Resources out of a searchset Bundle"""
    return [e["resource"] for e in (bundle or {}).get("entry", []) if e.get("resource")]


def bundle_total(bundle: Dict) -> int:
    resources = bundle_resources(bundle)
    total = (bundle or {}).get("total")
    return total if total else len(resources)


class AidboxClient:
    """
    REST client for Aidbox using client credentials (Basic auth).

    `transport` lets callers swap the network layer, e.g. httpx.MockTransport.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.client_id, self.client_secret),
            headers={"Content-Type": FHIR_CONTENT_TYPE, "Accept": FHIR_CONTENT_TYPE},
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, params: Dict = None, json: Dict = None) -> Any:
        try:
            async with self._client() as client:
                response = await client.request(method, path, params=params, json=json)
        except httpx.HTTPError as e:
            logger.error(f"FHIR {method} {path} failed: {e}")
            raise FhirError(502, f"FHIR server unreachable: {e}")

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            message = _outcome_message(payload) or f"FHIR request failed: {response.status_code}"
            logger.error(f"FHIR {method} {path} returned {response.status_code}: {message}")
            outcome = payload if isinstance(payload, dict) else None
            raise FhirError(response.status_code, message, outcome)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def search(self, resource_type: str, params: Dict[str, Any] = None) -> Dict:
        """Search a resource type; returns the Bundle"""
        clean = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
        return await self._request("GET", f"/{resource_type}", params=clean)

    async def search_resources(self, resource_type: str, params: Dict[str, Any] = None) -> List[Dict]:
        return bundle_resources(await self.search(resource_type, params))

    async def read(self, resource_type: str, resource_id: str) -> Dict:
        return await self._request("GET", f"/{resource_type}/{resource_id}")

    async def create(self, resource_type: str, body: Dict) -> Dict:
        resource = {**body, "resourceType": resource_type}
        return await self._request("POST", f"/{resource_type}", json=resource)

    async def update(self, resource_type: str, resource_id: str, body: Dict) -> Dict:
        resource = {**body, "resourceType": resource_type, "id": resource_id}
        return await self._request("PUT", f"/{resource_type}/{resource_id}", json=resource)

    async def delete(self, resource_type: str, resource_id: str) -> None:
        await self._request("DELETE", f"/{resource_type}/{resource_id}")

    async def get_raw(self, path: str) -> Any:
        """GET an arbitrary path relative to the FHIR base, query string included"""
        return await self._request("GET", "/" + path.lstrip("/"))


fhir_client = AidboxClient(
    settings.AIDBOX_BASE_URL,
    settings.AIDBOX_CLIENT_ID,
    settings.AIDBOX_CLIENT_SECRET,
    timeout=settings.FHIR_TIMEOUT_SECONDS,
)


def get_fhir_client() -> AidboxClient:
    """FastAPI dependency for the FHIR client"""
    return fhir_client
