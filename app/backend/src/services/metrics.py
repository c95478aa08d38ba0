"""Prometheus metric definitions for invoice generation."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

invoices_generated_total = Counter(
    "invoices_generated_total",
    "Invoices written, by generation mode.",
    labelnames=["mode"],
)

invoice_generation_outcomes_total = Counter(
    "invoice_generation_outcomes_total",
    "Per-client or per-visit generation outcomes.",
    labelnames=["mode", "outcome"],
)

invoice_generation_seconds = Histogram(
    "invoice_generation_seconds",
    "Duration of an invoice generation run in seconds.",
    labelnames=["mode"],
)

job_duration_seconds = Histogram(
    "job_duration_seconds",
    "Duration of background billing jobs in seconds.",
    labelnames=["task"],
)

invoice_reference_repairs_total = Counter(
    "invoice_reference_repairs_total",
    "Records re-flagged as invoiced by reconciliation.",
    labelnames=["kind"],
)

__all__ = [
    "invoice_generation_outcomes_total",
    "invoice_generation_seconds",
    "invoice_reference_repairs_total",
    "invoices_generated_total",
    "job_duration_seconds",
]
