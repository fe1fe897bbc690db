"""
Medication API Routes
Local formulary catalog and live FHIR Medication search.
"""
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from emr_backend.database.connection import get_db
from emr_backend.services.fhir_client import AidboxClient, get_fhir_client
from emr_backend.services.medication_catalog_service import (
    CatalogConflictError, CatalogNotFoundError, medication_catalog_service
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/medications", tags=["Medications"])


class CatalogItemRequest(BaseModel):
    id: Optional[str] = None
    name: str
    ndcCode: str
    rxCui: Optional[str] = None
    form: Optional[str] = None
    strength: Optional[str] = None
    fhirMedicationId: Optional[str] = None
    active: Optional[bool] = None

    @field_validator('name', 'ndcCode')
    @classmethod
    def check_not_empty(cls, value):
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value


class ImportByNdcRequest(BaseModel):
    ndcCode: str

    @field_validator('ndcCode')
    @classmethod
    def check_not_empty(cls, value):
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value


@router.get("/catalog")
async def list_catalog(
    search: Optional[str] = Query(None, description="Case-insensitive match on name or NDC"),
    active: Optional[Literal['true', 'false']] = Query(None),
    db: Session = Depends(get_db)
):
    items = medication_catalog_service.list_items(
        db, search=search, active=None if active is None else active == 'true'
    )
    return {'success': True, 'data': [item.to_dict() for item in items]}


@router.post("/catalog")
async def upsert_catalog_item(request: CatalogItemRequest, db: Session = Depends(get_db)):
    """Create or update a catalog entry, matched by id then NDC"""
    try:
        item = medication_catalog_service.upsert(
            db,
            item_id=request.id,
            name=request.name,
            ndc_code=request.ndcCode,
            rx_cui=request.rxCui,
            form=request.form,
            strength=request.strength,
            fhir_medication_id=request.fhirMedicationId,
            active=request.active,
        )
    except CatalogConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {'success': True, 'data': item.to_dict()}


@router.post("/catalog/import")
async def import_catalog_item(
    request: ImportByNdcRequest,
    client: AidboxClient = Depends(get_fhir_client),
    db: Session = Depends(get_db)
):
    """Copy a Medication from the FHIR server into the catalog"""
    try:
        item = await medication_catalog_service.import_by_ndc(db, client, request.ndcCode)
    except CatalogNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        'success': True,
        'data': item.to_dict(),
        'message': 'Medication imported from Aidbox into catalog',
    }


@router.get("/search")
async def search_medications(
    q: Optional[str] = Query(None),
    query: Optional[str] = Query(None),
    ndc: Optional[str] = Query(None),
    rxnorm: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=200),
    client: AidboxClient = Depends(get_fhir_client)
):
    """Search FHIR Medication by NDC, RxNorm code or free text"""
    text = q or query
    if not text and not ndc and not rxnorm:
        raise HTTPException(status_code=400, detail="Search query is required")

    result = await medication_catalog_service.search_fhir(client, query=text, ndc=ndc, rxnorm=rxnorm, limit=limit)
    return {'success': True, **result}
