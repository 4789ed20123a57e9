"""Request handlers for invoices, time entries and clients.

Each handler takes the process's BillingService plus the decoded JSON body
or query parameters and returns a Response. They don't depend on any web
framework; a router only has to serialise ``Response.body``.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any

import pydantic

from errors import BillingError, NotFoundError, ValidationError
from service import BillingService
from wire import InvoiceCreate, InvoicePatch, ListQuery, decode_entry, decode_entry_patch, encode

logger = logging.getLogger(__name__)


@dataclass
class Response:
    status: int
    body: Any = None


def handler(func):
    """Turn BillingErrors and malformed bodies into their status; anything else becomes a 500."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Response:
        try:
            return func(*args, **kwargs)
        except pydantic.ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"])
            message = f"{field}: {error['msg']}" if field else error["msg"]
            return Response(400, {"error": message, "field": field or None})
        except BillingError as e:
            if e.status >= 500:
                logger.error("%s failed: %s %s", func.__name__, e.message, e.details)
            body = {"error": e.message}
            if getattr(e, "field", None):
                body["field"] = e.field
            return Response(e.status, body)
        except Exception:
            logger.exception("Unhandled error in %s", func.__name__)
            return Response(500, {"error": "Internal server error"})

    return wrapper


def _require_dict(body) -> dict:
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


# --- Invoices ---


@handler
def post_invoice(service: BillingService, body: dict) -> Response:
    request = InvoiceCreate.model_validate(_require_dict(body))
    invoice = service.invoices.generate(
        client_id=request.client_id,
        entries=request.entries or [],
        addons=[a.to_addon() for a in request.addons or []],
        invoice_number=request.invoice_number,
        invoice_date=request.date,
    )
    return Response(201, encode(invoice))


@handler
def put_invoice(service: BillingService, invoice_id: str, body: dict) -> Response:
    patch = InvoicePatch.model_validate(_require_dict(body)).to_patch()
    invoice = service.guard.update_invoice(invoice_id, patch)
    return Response(200, encode(invoice))


@handler
def delete_invoice(service: BillingService, invoice_id: str) -> Response:
    service.guard.delete_invoice(invoice_id)
    return Response(204)


@handler
def get_invoices(service: BillingService, params: dict | None = None) -> Response:
    query = ListQuery.model_validate(params or {})
    invoices = service.storage.list_invoices(
        client_id=query.client_id, date_from=query.date_from, date_to=query.date_to
    )
    return Response(200, [encode(i) for i in invoices])


@handler
def get_invoice(service: BillingService, invoice_id: str) -> Response:
    invoice = service.storage.get_invoice(invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found", invoice_id=invoice_id)
    return Response(200, encode(invoice))


# --- Time entries ---


@handler
def get_time_entries(service: BillingService, params: dict | None = None) -> Response:
    query = ListQuery.model_validate(params or {})
    entries = service.ledger.list_entries(
        client_id=query.client_id, date_from=query.date_from, date_to=query.date_to
    )
    return Response(200, [encode(e) for e in entries])


@handler
def post_time_entry(service: BillingService, body: dict) -> Response:
    entry = service.ledger.create(decode_entry(_require_dict(body)))
    return Response(201, encode(entry))


@handler
def put_time_entry(service: BillingService, entry_id: str, body: dict) -> Response:
    patch = decode_entry_patch(_require_dict(body))
    entry = service.ledger.update(entry_id, patch)
    return Response(200, encode(entry))


@handler
def delete_time_entry(service: BillingService, entry_id: str) -> Response:
    service.ledger.remove(entry_id)
    return Response(204)


# --- Clients ---


@handler
def get_clients(service: BillingService) -> Response:
    return Response(200, [encode(c) for c in service.clients.load(force=True)])
