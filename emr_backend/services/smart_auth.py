"""
SMART-on-FHIR Authorization
Discovery and PKCE authorization-code flow for external EHRs (Epic, eClinicalWorks).
"""
import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = "launch/patient openid fhirUser offline_access patient/*.read user/*.read"
CALLBACK_PATH = "/api/ehr/callback"
COOKIE_MAX_AGE = 10 * 60  # seconds


class SmartAuthError(Exception):
    """Discovery or token exchange failure"""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass
class PkcePair:
    verifier: str
    challenge: str
    method: str = "S256"


def base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def normalize_issuer(issuer: str) -> str:
    return issuer[:-1] if issuer.endswith("/") else issuer


def generate_pkce() -> PkcePair:
    """RFC 7636 verifier from 32 random bytes, S256 challenge"""
    verifier = base64url(secrets.token_bytes(32))
    challenge = base64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return PkcePair(verifier=verifier, challenge=challenge)


def generate_state(connection_id: str) -> str:
    return f"{connection_id}.{base64url(secrets.token_bytes(16))}"


def connection_id_from_state(state: str) -> str:
    return state.split(".", 1)[0]


def cookie_names(connection_id: str) -> Dict[str, str]:
    return {
        'state': f"ehr_state_{connection_id}",
        'verifier': f"ehr_verifier_{connection_id}",
        'user': f"ehr_user_{connection_id}",
    }


def build_authorize_url(authorization_endpoint: str, client_id: str, redirect_uri: str,
                        state: str, code_challenge: str, aud: str, scope: Optional[str] = None) -> str:
    params = {
        'response_type': 'code',
        'client_id': client_id,
        'redirect_uri': redirect_uri,
        'scope': scope or DEFAULT_SCOPES,
        'state': state,
        'aud': aud,
        'code_challenge': code_challenge,
        'code_challenge_method': 'S256',
    }
    separator = '&' if '?' in authorization_endpoint else '?'
    return f"{authorization_endpoint}{separator}{urlencode(params)}"


class SmartClient:
    """HTTP side of the SMART flow; `transport` is swappable for tests"""

    def __init__(self, timeout: float = 15.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def fetch_smart_configuration(self, issuer: str) -> Dict[str, Any]:
        """GET {iss}/.well-known/smart-configuration"""
        url = f"{normalize_issuer(issuer)}/.well-known/smart-configuration"
        try:
            async with self._client() as client:
                response = await client.get(url, headers={'Accept': 'application/json'})
        except httpx.HTTPError as e:
            logger.error(f"SMART discovery request failed for {issuer}: {e}")
            raise SmartAuthError(502, f"SMART discovery failed: {e}")

        if response.status_code >= 400:
            logger.error(f"SMART discovery failed for {issuer}: {response.status_code}")
            raise SmartAuthError(response.status_code, f"SMART discovery failed: {response.status_code} {response.text}")
        return response.json()

    async def exchange_code_for_token(self, token_endpoint: str, code: str, redirect_uri: str,
                                      client_id: str, code_verifier: str,
                                      client_secret: Optional[str] = None) -> Dict[str, Any]:
        form = {
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': redirect_uri,
            'client_id': client_id,
            'code_verifier': code_verifier,
        }
        if client_secret:
            form['client_secret'] = client_secret

        try:
            async with self._client() as client:
                response = await client.post(token_endpoint, data=form, headers={'Accept': 'application/json'})
        except httpx.HTTPError as e:
            logger.error(f"Token exchange request failed: {e}")
            raise SmartAuthError(400, f"Token exchange failed: {e}")

        if response.status_code >= 400:
            raise SmartAuthError(400, f"Token exchange failed: {response.status_code} {response.text}")

        tokens = response.json()
        if not tokens.get('access_token'):
            raise SmartAuthError(400, "Token exchange succeeded but access_token missing")
        return tokens


smart_client = SmartClient()


def get_smart_client() -> SmartClient:
    """FastAPI dependency for the SMART HTTP client"""
    return smart_client
