"""Checkout, portal, plan and invoice schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

_CAMEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckoutRequest(BaseModel):
    model_config = _CAMEL_CONFIG

    plan_type: Literal["monthly", "yearly"]


class CheckoutResponse(BaseModel):
    model_config = _CAMEL_CONFIG

    session_id: str
    url: str | None
    plan_type: str
    plan_name: str
    price: int


class PortalResponse(BaseModel):
    url: str


class PlanResponse(BaseModel):
    model_config = _CAMEL_CONFIG

    price_id: str
    name: str
    price: int
    interval: str


class PlansResponse(BaseModel):
    monthly: PlanResponse
    yearly: PlanResponse


class InvoiceResponse(BaseModel):
    """Invoice formatted for the billing history table."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    date: datetime
    amount: str
    status: str | None
    invoice_number: str
    invoice_url: str | None
    description: str


class InvoiceListResponse(BaseModel):
    invoices: list[InvoiceResponse]
