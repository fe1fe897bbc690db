"""
EHR Integration API Routes
SMART-on-FHIR connection management and the PKCE authorization-code flow.
"""
import logging
from datetime import datetime, timedelta
from typing import Literal, Optional
from urllib.parse import urlencode, urlparse

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse, Response
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from emr_backend.config import settings
from emr_backend.database.connection import get_db
from emr_backend.database.models import EhrConnection, EhrUserToken, EhrVendor, Tenant, User
from emr_backend.services.auth_service import get_current_user, get_optional_user
from emr_backend.services.smart_auth import (
    CALLBACK_PATH, COOKIE_MAX_AGE, SmartClient, build_authorize_url, connection_id_from_state,
    cookie_names, generate_pkce, generate_state, get_smart_client
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ehr", tags=["EHR Integration"])


class CreateConnectionRequest(BaseModel):
    vendor: Literal['epic', 'eclinicalworks']
    tenantSlug: str = 'default'
    issuer: Optional[str] = None
    fhirBaseUrl: str
    clientId: str
    clientSecret: Optional[str] = None
    scopes: Optional[str] = None

    @field_validator('issuer', 'fhirBaseUrl')
    @classmethod
    def check_url(cls, value):
        if value is None:
            return value
        parsed = urlparse(value)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError(f"Invalid URL: {value}")
        return value

    @field_validator('tenantSlug', 'clientId')
    @classmethod
    def check_not_empty(cls, value):
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value


def _origin(request: Request) -> str:
    if settings.PUBLIC_BASE_URL:
        return settings.PUBLIC_BASE_URL.rstrip('/')
    return f"{request.url.scheme}://{request.url.netloc}"


def _set_flow_cookie(response: Response, name: str, value: str, max_age: int = COOKIE_MAX_AGE):
    response.set_cookie(
        name, value,
        httponly=True,
        samesite='lax',
        secure=settings.is_production,
        path='/',
        max_age=max_age,
    )


def _clear_flow_cookies(response: Response, connection_id: str):
    for name in cookie_names(connection_id).values():
        response.delete_cookie(name, path='/', secure=settings.is_production, httponly=True, samesite='lax')


def _get_connection(db: Session, connection_id: str) -> EhrConnection:
    connection = db.query(EhrConnection).filter(EhrConnection.id == connection_id).first()
    if not connection:
        raise HTTPException(status_code=404, detail="Connection not found")
    return connection


# ==================== Connections ====================

@router.get("/connections")
async def list_connections(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Configured EHR connections; `connected` reflects the caller's own token"""
    connections = db.query(EhrConnection).order_by(EhrConnection.created_at.desc()).all()
    tokens = {
        t.connection_id: t
        for t in db.query(EhrUserToken).filter(EhrUserToken.user_id == current_user.id).all()
    }

    now = datetime.utcnow()
    data = []
    for connection in connections:
        token = tokens.get(connection.id)
        data.append({**connection.to_dict(), 'connected': bool(token and token.is_valid(now))})

    return {'success': True, 'data': data}


@router.post("/connections", status_code=201)
async def create_connection(
    request: CreateConnectionRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    tenant = db.query(Tenant).filter(Tenant.slug == request.tenantSlug).first()
    if not tenant:
        tenant = Tenant(slug=request.tenantSlug, name=request.tenantSlug)
        db.add(tenant)
        db.flush()

    connection = EhrConnection(
        tenant_id=tenant.id,
        vendor=EhrVendor.EPIC if request.vendor == 'epic' else EhrVendor.ECLINICALWORKS,
        issuer=request.issuer or None,
        fhir_base_url=request.fhirBaseUrl,
        client_id=request.clientId,
        client_secret=request.clientSecret or None,
        scopes=request.scopes or None,
    )
    db.add(connection)
    db.commit()
    db.refresh(connection)

    logger.info(f"EHR connection {connection.id} ({connection.vendor.value}) created by {current_user.username}")
    return {'success': True, 'data': connection.to_dict()}


@router.get("/smart-configuration")
async def smart_configuration(
    iss: Optional[str] = Query(None, description="FHIR issuer base URL"),
    smart: SmartClient = Depends(get_smart_client)
):
    if not iss:
        raise HTTPException(status_code=400, detail="Missing query param: iss")
    return {'success': True, 'data': await smart.fetch_smart_configuration(iss)}


# ==================== Authorization flow ====================

@router.get("/authorize")
async def authorize(
    request: Request,
    connectionId: Optional[str] = Query(None),
    current_user: Optional[User] = Depends(get_optional_user),
    smart: SmartClient = Depends(get_smart_client),
    db: Session = Depends(get_db)
):
    """Start the SMART launch: discover endpoints, stash PKCE state in cookies, redirect"""
    if current_user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not connectionId:
        raise HTTPException(status_code=400, detail="Missing connectionId")

    connection = _get_connection(db, connectionId)
    config = await smart.fetch_smart_configuration(connection.effective_issuer)
    authorization_endpoint = config.get('authorization_endpoint')
    if not authorization_endpoint:
        raise HTTPException(status_code=400, detail="SMART discovery missing authorization_endpoint")

    pkce = generate_pkce()
    state = generate_state(connection.id)
    url = build_authorize_url(
        authorization_endpoint,
        client_id=connection.client_id,
        redirect_uri=f"{_origin(request)}{CALLBACK_PATH}",
        state=state,
        code_challenge=pkce.challenge,
        aud=connection.fhir_base_url,
        scope=connection.scopes,
    )

    response = RedirectResponse(url, status_code=302)
    names = cookie_names(connection.id)
    _set_flow_cookie(response, names['state'], state)
    _set_flow_cookie(response, names['verifier'], pkce.verifier)
    _set_flow_cookie(response, names['user'], str(current_user.id))

    logger.info(f"SMART authorize started for connection {connection.id} by {current_user.username}")
    return response


@router.get("/callback")
async def callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    current_user: Optional[User] = Depends(get_optional_user),
    smart: SmartClient = Depends(get_smart_client),
    db: Session = Depends(get_db)
):
    """Finish the SMART launch: verify state, exchange the code, store the user's token"""
    if current_user is None:
        return RedirectResponse("/login", status_code=302)

    origin = _origin(request)

    if error:
        params = {'error': error}
        if error_description:
            params['error_description'] = error_description
        logger.error(f"SMART authorization denied: {error} {error_description or ''}")
        response = RedirectResponse(f"{origin}/admin/ehr?{urlencode(params)}", status_code=302)
        if state:
            _clear_flow_cookies(response, connection_id_from_state(state))
        return response

    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code/state from SMART callback")

    connection_id = connection_id_from_state(state)
    if not connection_id:
        raise HTTPException(status_code=400, detail="Invalid state")

    names = cookie_names(connection_id)
    cookie_state = request.cookies.get(names['state'])
    cookie_verifier = request.cookies.get(names['verifier'])
    cookie_user = request.cookies.get(names['user'])

    if not cookie_state or cookie_state != state:
        raise HTTPException(status_code=400, detail="Invalid or missing state cookie")
    if not cookie_verifier:
        raise HTTPException(status_code=400, detail="Missing PKCE verifier cookie")
    if cookie_user and cookie_user != str(current_user.id):
        raise HTTPException(status_code=400, detail="SMART callback user mismatch")

    connection = _get_connection(db, connection_id)
    config = await smart.fetch_smart_configuration(connection.effective_issuer)
    token_endpoint = config.get('token_endpoint')
    if not token_endpoint:
        raise HTTPException(status_code=400, detail="SMART discovery missing token_endpoint")

    tokens = await smart.exchange_code_for_token(
        token_endpoint,
        code=code,
        redirect_uri=f"{origin}{CALLBACK_PATH}",
        client_id=connection.client_id,
        code_verifier=cookie_verifier,
        client_secret=connection.client_secret,
    )

    expires_in = tokens.get('expires_in')
    expires_at = datetime.utcnow() + timedelta(seconds=expires_in) if isinstance(expires_in, (int, float)) else None

    token = db.query(EhrUserToken).filter(
        EhrUserToken.connection_id == connection.id,
        EhrUserToken.user_id == current_user.id
    ).first()
    if token is None:
        token = EhrUserToken(connection_id=connection.id, user_id=current_user.id)
        db.add(token)

    token.access_token = tokens['access_token']
    token.refresh_token = tokens.get('refresh_token')
    token.id_token = tokens.get('id_token')
    token.token_type = tokens.get('token_type')
    token.scope = tokens.get('scope')
    token.patient = tokens.get('patient')
    token.expires_at = expires_at
    db.commit()

    logger.info(f"Stored EHR token for user {current_user.username} on connection {connection.id}")

    query = urlencode({'connected': '1', 'connectionId': connection.id})
    response = RedirectResponse(f"{origin}/admin/ehr?{query}", status_code=302)
    _clear_flow_cookies(response, connection.id)
    return response
