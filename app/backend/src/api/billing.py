"""Billing endpoints: client config, previews and invoice generation."""

from __future__ import annotations

from datetime import date
from typing import Any

import structlog
from celery.result import AsyncResult
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.backend.src.core.config import get_settings
from app.backend.src.db import get_session_dependency
from app.backend.src.models import Client
from app.backend.src.schemas.billing import BillingConfig, BillingPreview
from app.backend.src.schemas.invoice import (
    BulkGenerationResult,
    PeriodInvoiceRequest,
    QueuedGenerationJob,
    VisitInvoiceRequest,
    VisitInvoiceResult,
)
from app.backend.src.services.billing_config import resolve_billing_config
from app.backend.src.services.errors import (
    BillingPreconditionError,
    InvoicePersistenceError,
    RateRuleError,
    VisitNotFoundError,
)
from app.backend.src.services.invoice_generation import (
    generate_invoice_for_visit,
    generate_invoices_for_period,
    preview_client_billing,
)
from tasks.invoice_tasks import generate_period_invoices
from tasks.worker import celery

LOGGER = structlog.get_logger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


def _require_client(session: Session, client_id: int) -> Client:
    client = session.get(Client, client_id)
    if client is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@router.get("/clients/{client_id}/config", response_model=BillingConfig)
def client_billing_config(
    client_id: int,
    session: Session = Depends(get_session_dependency),
) -> BillingConfig:
    """Return the effective billing configuration of a client."""

    _require_client(session, client_id)
    return resolve_billing_config(session, client_id)


@router.get("/clients/{client_id}/preview", response_model=BillingPreview)
def client_billing_preview(
    client_id: int,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    session: Session = Depends(get_session_dependency),
) -> BillingPreview:
    """Price the client's un-invoiced completed visits without invoicing them."""

    _require_client(session, client_id)
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")
    try:
        return preview_client_billing(
            session, client_id, start_date=start_date, end_date=end_date
        )
    except RateRuleError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.post("/visits/{visit_id}/invoice", response_model=VisitInvoiceResult)
def invoice_visit(
    visit_id: int,
    payload: VisitInvoiceRequest,
    session: Session = Depends(get_session_dependency),
) -> VisitInvoiceResult:
    """Generate an invoice for a single visit."""

    try:
        return generate_invoice_for_visit(
            session,
            visit_id,
            organization_id=payload.organization_id,
            issue_date=payload.issue_date,
        )
    except BillingPreconditionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except VisitNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvoicePersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.post("/period-invoices", response_model=None)
def invoice_period(
    payload: PeriodInvoiceRequest,
    session: Session = Depends(get_session_dependency),
) -> BulkGenerationResult | QueuedGenerationJob:
    """Generate invoices for every client of a branch over a period.

    With ``run_async`` the run is queued on the billing worker and the task id
    is returned; poll ``/billing/jobs/{task_id}`` for the result.
    """

    if payload.start_date > payload.end_date:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")

    if payload.run_async:
        if not get_settings().redis_enabled:
            raise HTTPException(status_code=503, detail="Background processing is disabled")
        task = generate_period_invoices.delay(
            payload.organization_id,
            payload.branch_id,
            payload.start_date.isoformat(),
            payload.end_date.isoformat(),
            payload.period_type,
            payload.issue_date.isoformat() if payload.issue_date else None,
        )
        LOGGER.info(
            "period_invoice_generation_queued",
            task_id=task.id,
            organization_id=payload.organization_id,
            branch_id=payload.branch_id,
        )
        return QueuedGenerationJob(task_id=task.id)

    try:
        return generate_invoices_for_period(
            session,
            organization_id=payload.organization_id,
            branch_id=payload.branch_id,
            start_date=payload.start_date,
            end_date=payload.end_date,
            period_type=payload.period_type,
            issue_date=payload.issue_date,
        )
    except BillingPreconditionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/jobs/{task_id}")
def period_job_status(task_id: str) -> dict[str, Any]:
    """Return the state of a queued period run, with its result once finished."""

    result = AsyncResult(task_id, app=celery)
    state = result.state.lower()
    payload: dict[str, Any] = {"task_id": task_id, "status": state}
    if result.successful():
        payload["status"] = "completed"
        payload["result"] = result.result
    elif result.failed():
        payload["status"] = "error"
        payload["error"] = str(result.result)
    elif state == "pending":
        payload["status"] = "queued"
    elif state in {"started", "received"}:
        payload["status"] = "running"
    return payload
