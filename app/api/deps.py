"""
FastAPI dependencies (DB session, current family)
"""
from decimal import Decimal
from typing import Any

from fastapi import Request, HTTPException, status
from fastapi.encoders import jsonable_encoder

from app.infrastructure.db.session import get_db as _get_db
from app.utils.money import money_str


# Re-export get_db for routers
get_db = _get_db


def get_current_family_id(request: Request) -> int:
    """
    Family of the logged-in user, from the session

    Raises:
        HTTPException(401): no family in the session

    Usage:
        @router.get("/income-events")
        def list_income(family_id: int = Depends(get_current_family_id)):
            ...
    """
    family_id = request.session.get("family_id")
    if not family_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )
    return int(family_id)


def to_json(data: Any) -> Any:
    """JSON-ready structure with money as "0.00" strings instead of floats."""
    return jsonable_encoder(data, custom_encoder={Decimal: money_str})
