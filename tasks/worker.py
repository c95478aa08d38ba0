"""Celery application for the billing worker."""

from __future__ import annotations

import ssl
from pathlib import Path
from typing import Any

import structlog
from celery import Celery, signals
from celery.schedules import crontab
from kombu import Queue

from app.backend.src.core.config import Settings, get_settings

LOGGER = structlog.get_logger(__name__)
PROJECT_ROOT = Path(__file__).resolve().parents[1]

BILLING_QUEUE = "billing"
MAINTENANCE_QUEUE = "maintenance"

# Counters copied from a finished task's result into the completion log.
RESULT_LOG_FIELDS = (
    "success_count",
    "error_count",
    "total_amount",
    "visits_relinked",
    "extra_time_relinked",
)


def redis_ssl_options(url: str, ca_cert_path: str | None) -> dict[str, Any] | None:
    """Return redis-py TLS options for a ``rediss://`` URL, otherwise ``None``.

    A relative CA path is resolved against the project root. When the file is
    missing the system trust store is used instead.
    """

    if not url.startswith("rediss://"):
        return None

    options: dict[str, Any] = {"ssl_cert_reqs": ssl.CERT_REQUIRED}
    if ca_cert_path:
        candidate = Path(ca_cert_path).expanduser()
        if not candidate.is_absolute():
            candidate = PROJECT_ROOT / candidate
        if candidate.is_file():
            options["ssl_ca_certs"] = str(candidate)
        else:
            LOGGER.warning("redis_ca_certificate_missing", resolved_path=str(candidate))
    return options


def build_celery_config(settings: Settings) -> dict[str, Any]:
    """Queues, routes and beat schedule for the billing tasks."""

    config: dict[str, Any] = {
        "include": ["tasks.invoice_tasks"],
        "task_default_queue": BILLING_QUEUE,
        "task_queues": (Queue(BILLING_QUEUE), Queue(MAINTENANCE_QUEUE)),
        "task_routes": {
            "tasks.generate_period_invoices": {"queue": BILLING_QUEUE},
            "tasks.reconcile_invoice_references": {"queue": MAINTENANCE_QUEUE},
        },
        "beat_schedule": {
            "reconcile-invoice-references": {
                "task": "tasks.reconcile_invoice_references",
                "schedule": crontab(minute=15),
            },
        },
        "task_serializer": "json",
        "accept_content": ["json"],
        "result_serializer": "json",
        # One reserved message per worker process.
        "worker_prefetch_multiplier": 1,
        "broker_transport_options": {"global_keyprefix": "care-billing-broker:"},
        "result_backend_transport_options": {"global_keyprefix": "care-billing-result:"},
        "broker_connection_retry_on_startup": True,
    }

    broker_ssl = redis_ssl_options(settings.broker_url, settings.redis_ca_cert_path)
    if broker_ssl is not None:
        config["broker_use_ssl"] = broker_ssl
    backend_ssl = redis_ssl_options(settings.result_backend, settings.redis_ca_cert_path)
    if backend_ssl is not None:
        config["redis_backend_use_ssl"] = backend_ssl
    return config


def task_completion_fields(
    task_name: str | None, state: str | None, retval: Any
) -> dict[str, Any] | None:
    """Return log fields for a finished billing task, ``None`` for other tasks."""

    if not task_name or not task_name.startswith("tasks."):
        return None
    fields: dict[str, Any] = {"task_name": task_name, "state": state}
    if state == "SUCCESS" and isinstance(retval, dict):
        fields.update({key: retval[key] for key in RESULT_LOG_FIELDS if key in retval})
    return fields


settings = get_settings()

celery = Celery(
    "care_billing",
    broker=settings.broker_url,
    backend=settings.result_backend,
)
celery.conf.update(**build_celery_config(settings))

from . import invoice_tasks  # noqa: F401,E402  # isort: skip


@signals.task_postrun.connect
def _log_task_postrun(
    sender: Any | None = None,
    task_id: str | None = None,
    task: Any | None = None,
    retval: Any | None = None,
    state: str | None = None,
    **_: Any,
) -> None:
    fields = task_completion_fields(getattr(task, "name", None), state, retval)
    if fields is not None:
        LOGGER.info("celery_task_postrun", task_id=task_id, **fields)


__all__ = ["build_celery_config", "celery", "redis_ssl_options", "task_completion_fields"]
