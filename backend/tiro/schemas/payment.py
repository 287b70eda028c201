"""Payment schemas.

Request bodies take the web client's camelCase keys (snake_case also
accepted); responses use snake_case keys.
"""
from decimal import Decimal
from pydantic import BaseModel, Field


class _CamelModel(BaseModel):
    model_config = {"populate_by_name": True}


class PaymentIntentRequest(_CamelModel):
    project_id: str = Field(..., alias="projectId")


class PaymentIntentResponse(BaseModel):
    client_secret: str | None = None
    payment_intent_id: str
    amount: Decimal


class ConfirmPaymentRequest(_CamelModel):
    payment_intent_id: str = Field(..., alias="paymentIntentId")


class ConfirmPaymentResponse(BaseModel):
    success: bool
    payment_status: str
    project_status: str
    already_confirmed: bool = False
    duplicate_charge: bool = False


class TipRequest(_CamelModel):
    project_id: str = Field(..., alias="projectId")
    amount: Decimal = Field(..., gt=0)
    student_name: str = Field("", alias="studentName")


class TipResponse(BaseModel):
    url: str


class WebhookAck(BaseModel):
    received: bool = True
    handled: bool = False
