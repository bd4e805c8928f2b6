from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

PaymentMethod = Literal["mtn", "airtel"]

# MoMo request-to-pay statuses
STATUS_SUCCESSFUL = "SUCCESSFUL"
STATUS_PENDING = "PENDING"
STATUS_FAILED = "FAILED"


class PaymentRequest(BaseModel):
    """Client request to pay a settled trip."""

    phone_number: str = Field(min_length=9, max_length=15)
    payment_method: PaymentMethod = "mtn"

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, v: str) -> str:
        digits = v[1:] if v.startswith("+") else v
        if not digits.isdigit():
            raise ValueError("Phone number must contain digits only")
        return digits


class PaymentResult(BaseModel):
    """Outcome of a payment attempt as reported by the gateway."""

    success: bool
    status: str
    reference_id: str
    amount: float = Field(ge=0)
    message: str


class PaymentRecord(BaseModel):
    reference_id: str
    trip_id: str
    phone_number_masked: str
    amount: float = Field(ge=0)
    payment_method: PaymentMethod
    status: str
    created_at: datetime | None = None


def mask_phone_number(phone_number: str) -> str:
    """Keep only the last three digits of a phone number."""
    if len(phone_number) <= 3:
        return "*" * len(phone_number)
    return "*" * (len(phone_number) - 3) + phone_number[-3:]
