"""ORM models exposed for easy imports."""

from .bank_holiday import BankHoliday
from .billing_settings import (
    ClientAuthorityAccountingSettings,
    ClientGeneralAccountingSettings,
    ClientPrivateAccountingSettings,
)
from .client import Client
from .extra_time import ExtraTimeRecord
from .invoice import Invoice
from .invoice_sequence import InvoiceSequence
from .line_item import InvoiceLineItem
from .rate_schedule import ClientRateSchedule
from .service_rate import ClientRateAssignment, ServiceRate
from .visit import COMPLETED_VISIT_STATUSES, Visit

__all__ = [
    "BankHoliday",
    "COMPLETED_VISIT_STATUSES",
    "Client",
    "ClientAuthorityAccountingSettings",
    "ClientGeneralAccountingSettings",
    "ClientPrivateAccountingSettings",
    "ClientRateAssignment",
    "ClientRateSchedule",
    "ExtraTimeRecord",
    "Invoice",
    "InvoiceLineItem",
    "InvoiceSequence",
    "ServiceRate",
    "Visit",
]
