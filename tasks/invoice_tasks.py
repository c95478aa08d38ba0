"""Celery tasks for invoice generation."""

from __future__ import annotations

from datetime import date
from time import perf_counter
from typing import Any

import structlog

from app.backend.src.db import session_scope
from app.backend.src.schemas.invoice import BulkGenerationProgress
from app.backend.src.services.invoice_generation import generate_invoices_for_period
from app.backend.src.services.metrics import job_duration_seconds
from app.backend.src.services.reconciliation import reconcile_invoice_references as reconcile
from .worker import celery

LOGGER = structlog.get_logger(__name__)


@celery.task(name="tasks.generate_period_invoices")
def generate_period_invoices(
    organization_id: str,
    branch_id: str,
    start_date: str,
    end_date: str,
    period_type: str = "custom",
    issue_date: str | None = None,
) -> dict[str, Any]:
    """Run a period invoice generation outside the request cycle."""

    start = perf_counter()
    task_id = generate_period_invoices.request.id if hasattr(generate_period_invoices, "request") else None

    def _progress(progress: BulkGenerationProgress) -> None:
        LOGGER.info("period_invoice_progress", task_id=task_id, **progress.model_dump())

    try:
        with session_scope() as session:
            result = generate_invoices_for_period(
                session,
                organization_id=organization_id,
                branch_id=branch_id,
                start_date=date.fromisoformat(start_date),
                end_date=date.fromisoformat(end_date),
                period_type=period_type,
                issue_date=date.fromisoformat(issue_date) if issue_date else None,
                on_progress=_progress,
            )
        LOGGER.info(
            "celery_job_success",
            task_id=task_id,
            success_count=result.success_count,
            error_count=result.error_count,
        )
        return result.model_dump(mode="json")
    except Exception as exc:  # pragma: no cover - logged and re-raised
        LOGGER.error("celery_job_failure", task_id=task_id, error=str(exc))
        raise
    finally:
        job_duration_seconds.labels(task="generate_period_invoices").observe(perf_counter() - start)


@celery.task(name="tasks.reconcile_invoice_references")
def reconcile_invoice_references(organization_id: str | None = None) -> dict[str, Any]:
    """Re-flag records that are referenced by a line item but not marked invoiced."""

    start = perf_counter()
    try:
        with session_scope() as session:
            report = reconcile(session, organization_id=organization_id)
        return report.model_dump()
    except Exception as exc:  # pragma: no cover - logged and re-raised
        LOGGER.error("celery_job_failure", task="reconcile_invoice_references", error=str(exc))
        raise
    finally:
        job_duration_seconds.labels(task="reconcile_invoice_references").observe(
            perf_counter() - start
        )


__all__ = ["generate_period_invoices", "reconcile_invoice_references"]
