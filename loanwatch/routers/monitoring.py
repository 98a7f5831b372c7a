# loanwatch/routers/monitoring.py
"""
Scan triggers. An external scheduler calls these periodically; each call
is one full pass. Do not run two passes of the same scan concurrently.
"""

from dataclasses import asdict
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from loanwatch.database import get_db
from loanwatch.services.no_show_service import scan_no_show_reservations
from loanwatch.services.overdue_service import scan_overdue_loans
from loanwatch.services.repeat_offender_service import scan_repeat_offenders

router = APIRouter()


@router.post("/monitoring/overdue-scan", summary="Detect and escalate overdue loans")
async def run_overdue_scan(db: Session = Depends(get_db)):
    return asdict(await scan_overdue_loans(db))


@router.post("/monitoring/no-show-scan", summary="Detect missed reservation pickups")
async def run_no_show_scan(db: Session = Depends(get_db)):
    return asdict(await scan_no_show_reservations(db))


@router.post("/monitoring/repeat-offender-scan", summary="Flag users with repeated no-shows")
async def run_repeat_offender_scan(db: Session = Depends(get_db)):
    return asdict(await scan_repeat_offenders(db))
