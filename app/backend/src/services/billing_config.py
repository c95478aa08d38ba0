"""Resolve the effective billing configuration of a client."""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.core.config import get_settings
from app.backend.src.models import (
    ClientAuthorityAccountingSettings,
    ClientGeneralAccountingSettings,
    ClientPrivateAccountingSettings,
)
from app.backend.src.schemas.billing import (
    AuthorityBillingSettings,
    BillingConfig,
    GeneralBillingSettings,
    PayerType,
    PrivateBillingSettings,
)

LOGGER = structlog.get_logger(__name__)

AUTHORITY_PAYERS: frozenset[str] = frozenset(
    {"authorities", "authority", "authority_funded", "authority-funded"}
)
ACTUAL_TIME = "actual_time"


def resolve_payer(general: GeneralBillingSettings | None) -> PayerType:
    payer = ((general.service_payer if general else None) or "").strip().lower()
    return PayerType.AUTHORITY if payer in AUTHORITY_PAYERS else PayerType.PRIVATE


def merge_billing_settings(
    general: GeneralBillingSettings | None,
    private: PrivateBillingSettings | None,
    authority: AuthorityBillingSettings | None,
    *,
    default_credit_period_days: int = 30,
) -> BillingConfig:
    """Combine the three settings blocks into one :class:`BillingConfig`.

    ==================  =============================================
    field               source
    ==================  =============================================
    payer_type          general.service_payer
    use_actual_time     block of the resolved payer (else planned)
    include_extra_time  block of the resolved payer (else disabled)
    credit_period_days  private block only, for every payer
    authority_id        general, then authority block (authority only)
    ==================  =============================================

    The credit period deliberately ignores the authority block, matching
    how invoices have always been dated.
    """

    payer_type = resolve_payer(general)
    route_block: PrivateBillingSettings | AuthorityBillingSettings | None
    route_block = authority if payer_type is PayerType.AUTHORITY else private

    use_actual_time = False
    include_extra_time = False
    if route_block is not None:
        use_actual_time = (route_block.charge_based_on or "").strip().lower() == ACTUAL_TIME
        include_extra_time = bool(route_block.extra_time_calculation)

    credit_period_days = default_credit_period_days
    if private is not None and private.credit_period_days is not None:
        credit_period_days = private.credit_period_days

    authority_id = None
    authority_reference = None
    if payer_type is PayerType.AUTHORITY:
        authority_id = (general.authority_id if general else None) or (
            authority.authority_id if authority else None
        )
        authority_reference = authority.contract_reference if authority else None

    return BillingConfig(
        payer_type=payer_type,
        use_actual_time=use_actual_time,
        credit_period_days=credit_period_days,
        include_extra_time=include_extra_time,
        authority_id=authority_id,
        authority_reference=authority_reference,
        invoice_method=general.invoice_method if general else None,
    )


def resolve_billing_config(session: Session, client_id: int) -> BillingConfig:
    """Load the client's settings blocks and merge them.

    Settings can change between runs, so the result is never cached.
    """

    general_row = session.execute(
        select(ClientGeneralAccountingSettings).where(
            ClientGeneralAccountingSettings.client_id == client_id
        )
    ).scalar_one_or_none()
    private_row = session.execute(
        select(ClientPrivateAccountingSettings).where(
            ClientPrivateAccountingSettings.client_id == client_id
        )
    ).scalar_one_or_none()
    authority_row = session.execute(
        select(ClientAuthorityAccountingSettings).where(
            ClientAuthorityAccountingSettings.client_id == client_id
        )
    ).scalar_one_or_none()

    config = merge_billing_settings(
        GeneralBillingSettings.model_validate(general_row) if general_row else None,
        PrivateBillingSettings.model_validate(private_row) if private_row else None,
        AuthorityBillingSettings.model_validate(authority_row) if authority_row else None,
        default_credit_period_days=get_settings().billing_default_credit_period_days,
    )
    LOGGER.info(
        "billing_config_resolved",
        client_id=client_id,
        payer_type=config.payer_type.value,
        use_actual_time=config.use_actual_time,
        credit_period_days=config.credit_period_days,
        include_extra_time=config.include_extra_time,
    )
    return config


__all__ = ["AUTHORITY_PAYERS", "merge_billing_settings", "resolve_billing_config", "resolve_payer"]
