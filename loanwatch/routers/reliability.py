# loanwatch/routers/reliability.py
"""User reliability profiles, dashboard rankings and no-show history."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from loanwatch.database import get_db
from loanwatch.services import no_show_service, reliability_service

router = APIRouter()


@router.get("/reliability/dashboard", summary="Behaviour summary and top/flagged user lists")
def get_dashboard(db: Session = Depends(get_db)):
    return reliability_service.get_reliability_dashboard(db)


@router.get("/reliability/users/{user_id}", summary="Reliability profile for one user")
def get_user_reliability(user_id: str, db: Session = Depends(get_db)):
    """Recomputed on every call from the user's loan and reservation history."""
    return reliability_service.calculate_user_statistics(db, user_id).to_dict()


@router.get("/reliability/users/{user_id}/no-shows", summary="No-show counts over 30/60/90 days")
def get_user_no_shows(user_id: str, db: Session = Depends(get_db)):
    return no_show_service.get_user_no_show_patterns(db, user_id)
