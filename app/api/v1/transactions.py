"""
Transaction import boundary endpoints
"""
from datetime import date as date_type
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_current_family_id, to_json
from app.application.transactions import RecordTransactionUseCase, get_budget_category_mapping


router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"])


# === Request models ===

class RecordTransactionRequest(BaseModel):
    amount: str  # Decimal as string, positive = expense
    date: date_type
    description: str = ""
    merchant_name: Optional[str] = None
    spending_category_id: Optional[int] = None
    bank_account_id: Optional[int] = None


# === Endpoints ===

@router.post("/", status_code=status.HTTP_201_CREATED)
def record_transaction(
    req: RecordTransactionRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    tx = RecordTransactionUseCase(db).execute(family_id=family_id, **req.model_dump())
    return to_json({
        "id": tx.id,
        "amount": tx.amount,
        "date": tx.date,
        "description": tx.description,
        "merchant_name": tx.merchant_name,
        "spending_category_id": tx.spending_category_id,
        "bank_account_id": tx.bank_account_id,
    })


@router.get("/category-mapping")
def category_mapping(
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    mapping = get_budget_category_mapping(db, family_id)
    return to_json({str(k): v for k, v in mapping.items()})
