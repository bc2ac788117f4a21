from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_db
from stockledger.app.schemas.inventory import AlertRead
from stockledger.services import alerts

router = APIRouter(prefix="/alerts")


@router.get("", response_model=list[AlertRead])
def list_open_alerts(db: Session = Depends(get_db)):
    """Alertes non résolues (READ ONLY : acquittement / résolution gérés ailleurs)."""
    return alerts.list_open_alerts(db)
