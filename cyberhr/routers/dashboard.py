from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cyberhr.db import get_db
from cyberhr.dependencies import get_current_caller
from cyberhr.schemas import DashboardResponse
from cyberhr.security import Caller
from cyberhr.services.dashboard import build_dashboard

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("", response_model=DashboardResponse)
def get_dashboard(
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> DashboardResponse:
    return build_dashboard(db, caller)
