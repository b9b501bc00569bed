"""
Income event API endpoints
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_current_family_id, to_json
from app.application.attributions import get_income_attributions
from app.application.budget import AllocateIncomeUseCase, list_allocations
from app.application.errors import LedgerValidationError
from app.application.income_events import (
    CreateIncomeEventUseCase, BulkCreateIncomeEventsUseCase, MarkIncomeReceivedUseCase,
    RevertIncomeReceivedUseCase, UpdateIncomeEventUseCase, CancelIncomeEventUseCase,
    DeleteIncomeEventUseCase,
    list_income_events, get_income_event, get_upcoming_income_events, get_income_summary,
)
from app.application.transactions import get_remaining_amount
from app.domain.recurrence import FREQ_ONCE, project_occurrences
from app.infrastructure.db.models import IncomeEventModel, BudgetAllocationModel


router = APIRouter(prefix="/api/v1/income-events", tags=["income-events"])


# === Request models ===

class CreateIncomeEventRequest(BaseModel):
    name: str
    amount: str
    scheduled_date: date
    frequency: str = FREQ_ONCE
    source: Optional[str] = None
    notes: Optional[str] = None


class BulkCreateIncomeEventsRequest(BaseModel):
    items: List[CreateIncomeEventRequest]


class UpdateIncomeEventRequest(BaseModel):
    name: Optional[str] = None
    amount: Optional[str] = None
    scheduled_date: Optional[date] = None
    frequency: Optional[str] = None
    source: Optional[str] = None
    notes: Optional[str] = None


class MarkReceivedRequest(BaseModel):
    actual_date: date
    actual_amount: Optional[str] = None  # defaults to the scheduled amount


# === Helpers ===

def income_view(income: IncomeEventModel) -> dict:
    return {
        "id": income.id,
        "name": income.name,
        "amount": income.amount,
        "scheduled_date": income.scheduled_date,
        "frequency": income.frequency,
        "next_occurrence": income.next_occurrence,
        "status": income.status,
        "actual_date": income.actual_date,
        "actual_amount": income.actual_amount,
        "allocated_amount": income.allocated_amount,
        "remaining_amount": income.remaining_amount,
        "source": income.source,
        "notes": income.notes,
    }


def allocation_view(allocation: BudgetAllocationModel) -> dict:
    return {
        "id": allocation.id,
        "budget_category_id": allocation.budget_category_id,
        "income_event_id": allocation.income_event_id,
        "amount": allocation.amount,
        "percentage": allocation.percentage,
    }


# === Endpoints ===

@router.post("/", status_code=status.HTTP_201_CREATED)
def create_income_event(
    req: CreateIncomeEventRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    income = CreateIncomeEventUseCase(db).execute(family_id=family_id, **req.model_dump())
    return to_json(income_view(income))


@router.post("/bulk", status_code=status.HTTP_201_CREATED)
def bulk_create_income_events(
    req: BulkCreateIncomeEventsRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    created = BulkCreateIncomeEventsUseCase(db).execute(family_id, [item.model_dump() for item in req.items])
    return to_json([income_view(i) for i in created])


@router.get("/")
def list_income(
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    rows = list_income_events(db, family_id, status_filter, start_date, end_date, search, limit, offset)
    return to_json([income_view(i) for i in rows])


@router.get("/upcoming")
def upcoming_income(
    days: int = Query(30, ge=1, le=366),
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json([income_view(i) for i in get_upcoming_income_events(db, family_id, days)])


@router.get("/summary")
def income_summary(
    start_date: date,
    end_date: date,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(get_income_summary(db, family_id, start_date, end_date))


@router.get("/projection")
def projection(
    start_date: date,
    until: date,
    frequency: str = FREQ_ONCE,
    family_id: int = Depends(get_current_family_id),
):
    """Future occurrence dates of a schedule (nothing is stored)."""
    try:
        dates = project_occurrences(start_date, frequency, until)
    except ValueError as e:
        raise LedgerValidationError(str(e)) from e
    return to_json({"frequency": frequency, "dates": dates})


@router.get("/{income_event_id}")
def get_income(
    income_event_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(income_view(get_income_event(db, family_id, income_event_id)))


@router.patch("/{income_event_id}")
def update_income(
    income_event_id: int,
    req: UpdateIncomeEventRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    patch = req.model_dump(exclude_unset=True)
    income = UpdateIncomeEventUseCase(db).execute(family_id, income_event_id, patch)
    return to_json(income_view(income))


@router.delete("/{income_event_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_income(
    income_event_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    DeleteIncomeEventUseCase(db).execute(family_id, income_event_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{income_event_id}/receive")
def mark_received(
    income_event_id: int,
    req: MarkReceivedRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    income, spawned = MarkIncomeReceivedUseCase(db).execute(
        family_id, income_event_id, req.actual_date, req.actual_amount,
    )
    return to_json({
        "income_event": income_view(income),
        "next_occurrence": income_view(spawned) if spawned else None,
    })


@router.post("/{income_event_id}/revert")
def revert_received(
    income_event_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    income = RevertIncomeReceivedUseCase(db).execute(family_id, income_event_id)
    return to_json(income_view(income))


@router.post("/{income_event_id}/cancel")
def cancel_income(
    income_event_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    income = CancelIncomeEventUseCase(db).execute(family_id, income_event_id)
    return to_json(income_view(income))


@router.get("/{income_event_id}/attributions")
def income_attributions(
    income_event_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(get_income_attributions(db, family_id, income_event_id))


@router.get("/{income_event_id}/remaining")
def remaining_amount(
    income_event_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json({
        "income_event_id": income_event_id,
        "remaining_amount": get_remaining_amount(db, family_id, income_event_id),
    })


@router.get("/{income_event_id}/allocations")
def income_allocations(
    income_event_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json([allocation_view(a) for a in list_allocations(db, family_id, income_event_id)])


@router.post("/{income_event_id}/allocate", status_code=status.HTTP_201_CREATED)
def allocate_income(
    income_event_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    allocations = AllocateIncomeUseCase(db).execute(family_id, income_event_id)
    return to_json([allocation_view(a) for a in allocations])
