"""
Budget category API endpoints
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_current_family_id, to_json
from app.application.budget import (
    CreateBudgetCategoryUseCase, UpdateBudgetCategoryUseCase, DeactivateBudgetCategoryUseCase,
    DeleteBudgetCategoryUseCase, ApplyBudgetTemplateUseCase,
    list_budget_categories, get_budget_overview, get_category_consumption,
    get_budget_projections, create_budget_template,
)
from app.infrastructure.db.models import BudgetCategoryModel


router = APIRouter(prefix="/api/v1/budget", tags=["budget"])


class CreateCategoryRequest(BaseModel):
    name: str
    target_percentage: str
    color: Optional[str] = None
    sort_order: int = 0


class UpdateCategoryRequest(BaseModel):
    name: Optional[str] = None
    target_percentage: Optional[str] = None
    color: Optional[str] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class TemplateCategoryRequest(BaseModel):
    name: str
    target_percentage: str


class ApplyTemplateRequest(BaseModel):
    categories: List[TemplateCategoryRequest]


def category_view(category: BudgetCategoryModel) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "target_percentage": category.target_percentage,
        "color": category.color,
        "sort_order": category.sort_order,
        "is_active": category.is_active,
    }


@router.get("/categories")
def list_categories(
    include_inactive: bool = False,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json([category_view(c) for c in list_budget_categories(db, family_id, include_inactive)])


@router.post("/categories", status_code=status.HTTP_201_CREATED)
def create_category(
    req: CreateCategoryRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    category, warnings = CreateBudgetCategoryUseCase(db).execute(family_id=family_id, **req.model_dump())
    return to_json({"category": category_view(category), "warnings": warnings})


@router.patch("/categories/{category_id}")
def update_category(
    category_id: int,
    req: UpdateCategoryRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    category, warnings = UpdateBudgetCategoryUseCase(db).execute(
        family_id, category_id, **req.model_dump(exclude_unset=True),
    )
    return to_json({"category": category_view(category), "warnings": warnings})


@router.post("/categories/{category_id}/deactivate")
def deactivate_category(
    category_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(category_view(DeactivateBudgetCategoryUseCase(db).execute(family_id, category_id)))


@router.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(
    category_id: int,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    DeleteBudgetCategoryUseCase(db).execute(family_id, category_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/categories/{category_id}/consumption")
def category_consumption(
    category_id: int,
    start_date: date,
    end_date: date,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(get_category_consumption(db, family_id, category_id, start_date, end_date))


@router.get("/overview")
def budget_overview(
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(get_budget_overview(db, family_id))


@router.get("/projections")
def budget_projections(
    months: int = Query(6, ge=1, le=24),
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(get_budget_projections(db, family_id, months))


@router.get("/template")
def budget_template(
    name: str = "My budget",
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    return to_json(create_budget_template(db, family_id, name))


@router.post("/template/apply")
def apply_budget_template(
    req: ApplyTemplateRequest,
    family_id: int = Depends(get_current_family_id),
    db: Session = Depends(get_db),
):
    categories, warnings = ApplyBudgetTemplateUseCase(db).execute(
        family_id, [line.model_dump() for line in req.categories],
    )
    return to_json({"categories": [category_view(c) for c in categories], "warnings": warnings})
