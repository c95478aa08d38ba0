"""Health check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from ..db import get_session_dependency
from ..models import InvoiceSequence

router = APIRouter(tags=["health"])


@router.get("/health/live")
def liveness() -> dict[str, str]:
    return {"status": "live"}


@router.get("/health/ready")
def readiness(session: Session = Depends(get_session_dependency)) -> dict[str, object]:
    """Check the database connection and that the billing schema is in place."""

    session.execute(text("SELECT 1"))
    sequences = session.execute(select(func.count(InvoiceSequence.id))).scalar_one()
    return {
        "status": "ready",
        "database": session.get_bind().dialect.name,
        "invoice_sequences": sequences,
    }


@router.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus metrics, including invoice generation counters."""

    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
