"""
Payment and attribution API endpoints
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_current_family_id, to_json
from app.application.attributions import (
    AttributeToIncomeUseCase, RemoveAttributionUseCase, ReplaceAttributionUseCase,
    SplitPaymentUseCase, AutoAttributePaymentsUseCase,
    suggest_split, suggest_attributions, get_payment_attributions, check_attribution_capacity,
)
from app.application.payments import (
    CreatePaymentUseCase, UpdatePaymentUseCase, MarkPaymentPaidUseCase, RevertPaymentPaidUseCase,
    CancelPaymentUseCase, DeletePaymentUseCase,
    payment_view, list_payments, get_payment, get_overdue_payments, get_upcoming_payments,
    get_payment_summary,
)
from app.domain.attribution import TYPE_MANUAL, ReplaceAttribution, SplitLeg
from app.domain.payment import TYPE_ONCE
from app.infrastructure.db.models import PaymentAttributionModel


router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


# === Request models ===

class CreatePaymentRequest(BaseModel):
    payee: str
    amount: str
    due_date: date
    payment_type: str = TYPE_ONCE
    frequency: Optional[str] = None
    spending_category_id: Optional[int] = None
    autopay_enabled: bool = False
    notes: Optional[str] = None


class UpdatePaymentRequest(BaseModel):
    payee: Optional[str] = None
    amount: Optional[str] = None
    due_date: Optional[date] = None
    payment_type: Optional[str] = None
    frequency: Optional[str] = None
    spending_category_id: Optional[int] = None
    autopay_enabled: Optional[bool] = None
    notes: Optional[str] = None


class MarkPaidRequest(BaseModel):
    paid_amount: Optional[str] = None  # defaults to the full amount
    paid_date: Optional[date] = None  # defaults to today


class AttributeRequest(BaseModel):
    income_event_id: int
    amount: str
    attribution_type: str = TYPE_MANUAL


class ReplaceAttributionRequest(BaseModel):
    amount: str
    attribution_type: str = TYPE_MANUAL


class SplitLegRequest(BaseModel):
    income_event_id: int
    amount: str


class SplitPaymentRequest(BaseModel):
    legs: List[SplitLegRequest]
    attribution_type: str = TYPE_MANUAL


# === Helpers ===

def attribution_view(attribution: PaymentAttributionModel) -> dict:
    return {
        "id": attribution.id,
        "payment_id": attribution.payment_id,
        "income_event_id": attribution.income_event_id,
        "amount": attribution.amount,
        "attribution_type": attribution.attribution_type,
    }


# === Payments ===

@router.post("/", status_code=status.HTTP_201_CREATED)
def create_payment(
    req: CreatePaymentRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    payment = CreatePaymentUseCase(db).execute(family_id=family_id, **req.model_dump())
    return to_json(payment_view(payment))


@router.get("/")
def list_all_payments(
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    spending_category_id: Optional[int] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    rows = list_payments(
        db, family_id, status_filter, start_date, end_date, search, spending_category_id, limit, offset,
    )
    return to_json([payment_view(p) for p in rows])


@router.get("/overdue")
def overdue_payments(
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json([payment_view(p) for p in get_overdue_payments(db, family_id)])


@router.get("/upcoming")
def upcoming_payments(
    days: int = Query(30, ge=1, le=366),
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json([payment_view(p) for p in get_upcoming_payments(db, family_id, days)])


@router.get("/summary")
def payment_summary(
    start_date: date,
    end_date: date,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(get_payment_summary(db, family_id, start_date, end_date))


@router.post("/auto-attribute")
def auto_attribute(
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    count = AutoAttributePaymentsUseCase(db).execute(family_id)
    return {"attributed_count": count}


@router.get("/{payment_id}")
def get_one_payment(
    payment_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(payment_view(get_payment(db, family_id, payment_id)))


@router.patch("/{payment_id}")
def update_payment(
    payment_id: int,
    req: UpdatePaymentRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    payment = UpdatePaymentUseCase(db).execute(family_id, payment_id, req.model_dump(exclude_unset=True))
    return to_json(payment_view(payment))


@router.delete("/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment(
    payment_id: int,
    delete_all: bool = False,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    DeletePaymentUseCase(db).execute(family_id, payment_id, delete_all=delete_all)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{payment_id}/pay")
def mark_paid(
    payment_id: int,
    req: MarkPaidRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    payment, spawned = MarkPaymentPaidUseCase(db).execute(family_id, payment_id, req.paid_amount, req.paid_date)
    return to_json({
        "payment": payment_view(payment),
        "next_payment": payment_view(spawned) if spawned else None,
    })


@router.post("/{payment_id}/revert")
def revert_paid(
    payment_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(payment_view(RevertPaymentPaidUseCase(db).execute(family_id, payment_id)))


@router.post("/{payment_id}/cancel")
def cancel_payment(
    payment_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(payment_view(CancelPaymentUseCase(db).execute(family_id, payment_id)))


# === Attributions ===

@router.get("/{payment_id}/attributions")
def payment_attributions(
    payment_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(get_payment_attributions(db, family_id, payment_id))


@router.post("/{payment_id}/attribute", status_code=status.HTTP_201_CREATED)
def attribute_to_income(
    payment_id: int,
    req: AttributeRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    attribution = AttributeToIncomeUseCase(db).execute(
        family_id, payment_id, req.income_event_id, req.amount, req.attribution_type,
    )
    return to_json(attribution_view(attribution))


@router.put("/{payment_id}/attributions/{attribution_id}")
def replace_attribution(
    payment_id: int,
    attribution_id: int,
    req: ReplaceAttributionRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    command = ReplaceAttribution(
        payment_id=payment_id,
        attribution_id=attribution_id,
        new_amount=req.amount,
        attribution_type=req.attribution_type,
    )
    return to_json(attribution_view(ReplaceAttributionUseCase(db).execute(family_id, command)))


@router.delete("/{payment_id}/attributions/{attribution_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_attribution(
    payment_id: int,
    attribution_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    RemoveAttributionUseCase(db).execute(family_id, payment_id, attribution_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{payment_id}/split", status_code=status.HTTP_201_CREATED)
def split_payment(
    payment_id: int,
    req: SplitPaymentRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    legs = [SplitLeg(income_event_id=leg.income_event_id, amount=leg.amount) for leg in req.legs]
    created = SplitPaymentUseCase(db).execute(family_id, payment_id, legs, req.attribution_type)
    return to_json([attribution_view(a) for a in created])


@router.post("/{payment_id}/attributions/check")
def check_attributions(
    payment_id: int,
    req: SplitPaymentRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    legs = [SplitLeg(income_event_id=leg.income_event_id, amount=leg.amount) for leg in req.legs]
    return to_json(check_attribution_capacity(db, family_id, payment_id, legs))


@router.get("/{payment_id}/split-suggestion")
def split_suggestion(
    payment_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(suggest_split(db, family_id, payment_id))


@router.get("/{payment_id}/suggestions")
def attribution_suggestions(
    payment_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(suggest_attributions(db, family_id, payment_id))
