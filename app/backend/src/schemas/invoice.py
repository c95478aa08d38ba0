"""Invoice schemas and invoice generation result shapes."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .line_item import InvoiceLineItemRead


class InvoiceRead(BaseModel):
    id: int
    client_id: int
    organization_id: str
    invoice_number: str
    description: str
    net_amount: Decimal
    vat_amount: Decimal
    total_amount: Decimal
    invoice_date: date
    due_date: date
    status: str
    bill_to_type: str
    authority_id: str | None
    booked_time_minutes: int
    line_items: list[InvoiceLineItemRead] = []

    model_config = ConfigDict(from_attributes=True)


class VisitInvoiceStatus(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    ALREADY_INVOICED = "already_invoiced"


class VisitInvoiceResult(BaseModel):
    """Outcome of invoicing a single visit."""

    visit_id: int
    status: VisitInvoiceStatus
    invoice: InvoiceRead | None = None
    reason: str | None = None


class BulkGenerationProgress(BaseModel):
    current: int
    total: int
    current_client: str | None = None


class ClientInvoiceSummary(BaseModel):
    client_id: int
    client_name: str
    invoice_id: int
    invoice_number: str
    amount: Decimal
    line_item_count: int
    unmatched_visit_ids: list[int] = Field(default_factory=list)


class ClientGenerationError(BaseModel):
    client_id: int
    client_name: str
    reason: str
    visit_count: int


class BulkGenerationResult(BaseModel):
    """Summary returned by a period run; per-client failures never raise."""

    success_count: int = 0
    error_count: int = 0
    total_amount: Decimal = Decimal("0.00")
    invoices: list[ClientInvoiceSummary] = Field(default_factory=list)
    errors: list[ClientGenerationError] = Field(default_factory=list)
    message: str | None = None


class VisitInvoiceRequest(BaseModel):
    organization_id: str
    issue_date: date | None = None


class PeriodInvoiceRequest(BaseModel):
    organization_id: str
    branch_id: str
    start_date: date
    end_date: date
    period_type: str = "custom"
    issue_date: date | None = None
    run_async: bool = False


class QueuedGenerationJob(BaseModel):
    task_id: str
    status: str = "queued"


class ReconciliationReport(BaseModel):
    visits_relinked: int = 0
    extra_time_relinked: int = 0
