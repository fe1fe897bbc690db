"""
Medication Catalog Service
Local formulary cache, optionally seeded from Medication resources on the FHIR server.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from emr_backend.database.models import MedicationCatalog
from emr_backend.services.fhir_client import AidboxClient, bundle_resources

logger = logging.getLogger(__name__)

NDC_SYSTEM = "http://hl7.org/fhir/sid/ndc"
RXNORM_SYSTEM = "http://www.nlm.nih.gov/research/umls/rxnorm"


class CatalogNotFoundError(LookupError):
    """No Medication on the FHIR server for the requested NDC"""


class CatalogConflictError(ValueError):
    """The NDC code already belongs to a different catalog row"""


def _find_coding(codings: List[Dict], system: str) -> Optional[Dict]:
    return next((c for c in codings if c.get("system") == system), None)


def catalog_fields_from_medication(med: Dict[str, Any]) -> Dict[str, Any]:
    """Map a FHIR Medication onto catalog columns"""
    code = med.get("code") or {}
    codings = code.get("coding") or []
    ndc = _find_coding(codings, NDC_SYSTEM) or {}
    rx = _find_coding(codings, RXNORM_SYSTEM) or {}

    form = med.get("form") or {}
    form_text = form.get("text") or ((form.get("coding") or [{}])[0]).get("display")

    strength = None
    ingredients = med.get("ingredient") or []
    if ingredients:
        numerator = (ingredients[0].get("strength") or {}).get("numerator") or {}
        strength = numerator.get("unit")
        if not strength and numerator.get("value") is not None:
            strength = str(numerator["value"])

    return {
        'name': code.get("text") or ndc.get("display") or rx.get("display") or "Medication",
        'ndc_code': ndc.get("code") or med.get("id"),
        'rx_cui': rx.get("code"),
        'form': form_text or None,
        'strength': strength or None,
        'fhir_medication_id': f"Medication/{med['id']}" if med.get("id") else None,
    }


def search_result_from_medication(med: Dict[str, Any]) -> Dict[str, Any]:
    """Shape returned by the live FHIR medication search"""
    code = med.get("code") or {}
    codings = code.get("coding") or []
    ndc = _find_coding(codings, NDC_SYSTEM) or {}
    rx = _find_coding(codings, RXNORM_SYSTEM) or {}

    return {
        'id': med.get("id"),
        'ndc': ndc.get("code") or "",
        'name': code.get("text") or ndc.get("display") or "Unknown Medication",
        'manufacturer': (med.get("manufacturer") or {}).get("display"),
        'form': (med.get("form") or {}).get("text"),
        'ingredients': [
            {
                'name': (ing.get("itemCodeableConcept") or {}).get("text") or "Unknown",
                'strength': ((ing.get("strength") or {}).get("numerator") or {}).get("unit") or "",
            }
            for ing in med.get("ingredient") or []
        ],
        'rxnorm': rx.get("code"),
    }


class MedicationCatalogService:
    """CRUD over the medication_catalog table"""

    def list_items(self, db: Session, search: str = None, active: bool = None) -> List[MedicationCatalog]:
        query = db.query(MedicationCatalog)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                MedicationCatalog.name.ilike(pattern),
                MedicationCatalog.ndc_code.ilike(pattern),
            ))
        if active is not None:
            query = query.filter(MedicationCatalog.active == active)
        return query.order_by(MedicationCatalog.name.asc()).all()

    def upsert(self, db: Session, item_id: str = None, **fields) -> MedicationCatalog:
        """
        Create or update a catalog row.

        An explicit id wins; otherwise the NDC code identifies the row.
        """
        item = None
        if item_id:
            item = db.query(MedicationCatalog).filter(MedicationCatalog.id == item_id).first()
        if item is None and fields.get("ndc_code"):
            item = db.query(MedicationCatalog).filter(
                MedicationCatalog.ndc_code == fields["ndc_code"]
            ).first()

        if item is None:
            item = MedicationCatalog(id=item_id) if item_id else MedicationCatalog()
            db.add(item)
            logger.info(f"Adding medication to catalog: {fields.get('ndc_code')}")

        for key, value in fields.items():
            if key == "active" and value is None:
                continue
            setattr(item, key, value)
        if item.active is None:
            item.active = True

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(f"Catalog NDC conflict: {fields.get('ndc_code')}")
            raise CatalogConflictError(
                f"NDC {fields.get('ndc_code')} is already used by another catalog item"
            )
        db.refresh(item)
        return item

    async def import_by_ndc(self, db: Session, client: AidboxClient, ndc_code: str) -> MedicationCatalog:
        bundle = await client.search("Medication", {"code": f"{NDC_SYSTEM}|{ndc_code}", "_count": 5})
        medications = bundle_resources(bundle)
        if not medications:
            raise CatalogNotFoundError(f"No Medication found in Aidbox for NDC {ndc_code}")

        fields = catalog_fields_from_medication(medications[0])
        fields["active"] = True
        return self.upsert(db, **fields)

    async def search_fhir(self, client: AidboxClient, query: str = None, ndc: str = None,
                          rxnorm: str = None, limit: int = 20) -> Dict[str, Any]:
        """Live search of Medication resources by NDC, RxNorm or name text"""
        if ndc:
            params = {"code": f"{NDC_SYSTEM}|{ndc}"}
        elif rxnorm:
            params = {"code": f"{RXNORM_SYSTEM}|{rxnorm}"}
        else:
            params = {"code:text": query}
        params["_count"] = limit

        bundle = await client.search("Medication", params)
        medications = [search_result_from_medication(m) for m in bundle_resources(bundle)]
        return {
            'count': len(medications),
            'total': (bundle or {}).get("total") or len(medications),
            'medications': medications,
        }


medication_catalog_service = MedicationCatalogService()
