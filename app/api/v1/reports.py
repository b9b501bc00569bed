"""
Report API endpoints (read-only)
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_current_family_id, to_json
from app.application.reports import ReportsService
from app.domain.periods import GROUP_MONTH


router = APIRouter(prefix="/api/v1/reports", tags=["reports"])


@router.get("/cash-flow")
def cash_flow(
    start_date: date,
    end_date: date,
    group_by: str = GROUP_MONTH,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(ReportsService(db).cash_flow(family_id, start_date, end_date, group_by))


@router.get("/spending")
def spending_analysis(
    start_date: date,
    end_date: date,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(ReportsService(db).spending_analysis(family_id, start_date, end_date))


@router.get("/budget-performance")
def budget_performance(
    start_date: date,
    end_date: date,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(ReportsService(db).budget_performance(family_id, start_date, end_date))


@router.get("/income-analysis")
def income_analysis(
    start_date: date,
    end_date: date,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(ReportsService(db).income_analysis(family_id, start_date, end_date))


@router.get("/net-worth")
def net_worth(
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(ReportsService(db).net_worth(family_id))


@router.get("/savings-rate")
def savings_rate(
    start_date: date,
    end_date: date,
    target_rate: Optional[float] = Query(None, ge=0, le=100),
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(ReportsService(db).savings_rate(family_id, start_date, end_date, target_rate))


@router.get("/monthly-summary")
def monthly_summary(
    year: int = Query(..., ge=1900, le=9999),
    month: int = Query(..., ge=1, le=12),
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(ReportsService(db).monthly_summary(family_id, year, month))


@router.get("/annual-summary")
def annual_summary(
    year: int = Query(..., ge=2000, le=2100),
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(ReportsService(db).annual_summary(family_id, year))


@router.get("/debt-analysis")
def debt_analysis(
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(ReportsService(db).debt_analysis(family_id))
