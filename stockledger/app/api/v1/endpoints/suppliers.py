from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_db
from stockledger.app.schemas.inventory import SupplierCreate, SupplierRead
from stockledger.services import catalog

router = APIRouter(prefix="/suppliers")


@router.post("", response_model=SupplierRead, status_code=201)
def create_supplier(payload: SupplierCreate, db: Session = Depends(get_db)):
    return catalog.create_supplier(
        db,
        code=payload.code,
        name=payload.name,
        email=payload.email,
        lead_time_days=payload.lead_time_days,
    )


@router.get("/{supplier_id}", response_model=SupplierRead)
def get_supplier(supplier_id: int, db: Session = Depends(get_db)):
    return catalog.get_supplier(db, supplier_id)
