"""Webhook acknowledgement schemas."""

from pydantic import BaseModel


class BillingWebhookAck(BaseModel):
    received: bool = True


class IdentityWebhookAck(BaseModel):
    success: bool = True
