"""Invoice line item schema."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class InvoiceLineItemRead(BaseModel):
    id: int
    invoice_id: int
    visit_id: int | None
    extra_time_record_id: int | None
    description: str
    visit_date: date
    duration_minutes: int
    rate_type_applied: str
    unit_price: Decimal
    quantity: Decimal
    line_total: Decimal
    vat_amount: Decimal
    bank_holiday_multiplier_applied: Decimal
    day_type: str

    model_config = ConfigDict(from_attributes=True)
