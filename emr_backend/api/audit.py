"""
Audit Log API Routes
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from emr_backend.database.models import User
from emr_backend.services.auth_service import require_admin
from emr_backend.services.audit_service import AuditAction, audit_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audit", tags=["Audit"])


@router.get("")
async def get_audit_log(
    userId: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    resource: Optional[str] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1),
    current_user: User = Depends(require_admin)
):
    """Audit trail, newest first (admin only)"""
    if action and action not in {a.value for a in AuditAction}:
        raise HTTPException(status_code=400, detail=f"Unknown audit action: {action}")

    events = audit_service.get_log(
        user_id=userId,
        action=action,
        resource=resource,
        start=start,
        end=end,
        limit=limit,
    )
    return {'success': True, 'data': [e.to_dict() for e in events], 'count': len(events)}
