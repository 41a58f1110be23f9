"""
Pydantic schemas for the verification flow.

Covers both wire formats: requests/responses exchanged with the upstream auth
backend, and the view served to the verification page.
"""

import re
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from otpverify.core.errors import Severity

_DATETIME = TypeAdapter(datetime)


class VerifyOtpRequest(BaseModel):
    """Body of POST /api/auth/verify-otp"""
    email: str
    otp: str = Field(..., min_length=6, max_length=6, description="6-digit verification code")

    @field_validator('otp')
    @classmethod
    def validate_code_format(cls, v: str) -> str:
        """Ensure code is exactly 6 digits"""
        if not re.match(r'^[0-9]{6}$', v):
            raise ValueError('Code must be exactly 6 digits')
        return v


class ResendOtpRequest(BaseModel):
    """Body of POST /api/auth/resend-otp"""
    email: str


class ApiReply(BaseModel):
    """
    JSON body returned by the auth backend.

    Every field is optional; unknown fields are kept.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    msg: Optional[str] = None
    success: Optional[bool] = None
    attempts_remaining: Optional[int] = Field(None, alias="attemptsRemaining")
    locked_until: Optional[datetime] = Field(
        None,
        validation_alias=AliasChoices("lockedUntil", "lockoutUntil", "locked_until"),
        serialization_alias="lockedUntil",
    )

    @field_validator("locked_until", mode="before")
    @classmethod
    def parse_locked_until(cls, v: Any) -> Optional[datetime]:
        """Display-only: an unparseable timestamp is dropped, never fatal"""
        if v is None or v == "":
            return None
        try:
            return _DATETIME.validate_python(v)
        except PydanticValidationError:
            return None


class Notice(BaseModel):
    """A user-facing message with its severity"""
    message: str
    severity: Severity


class ManualEmailRequest(BaseModel):
    """Manual email entry when no stored identity was found (shape checked by the resolver)"""
    email: str = Field(..., max_length=254)


class CodeInputEvent(BaseModel):
    """A single interaction with the six code inputs"""
    action: Literal["digit", "backspace", "paste", "left", "right"]
    index: int = Field(0, ge=0)
    value: str = ""


class AbandonRequest(BaseModel):
    """Leave the verification flow for registration or login"""
    destination: Literal["register", "login"]


class VerificationView(BaseModel):
    """Everything the verification page needs to render"""
    state: str
    email: Optional[str] = None
    needs_manual_entry: bool = False
    remaining_seconds: int = 0
    countdown: str = "0:00"
    urgency: str = "critical"
    expired: bool = False
    can_submit: bool = False
    can_resend: bool = False
    attempts_remaining: int
    attempts_warning: Optional[str] = None
    locked: bool = False
    lockout_until: Optional[datetime] = None
    digits: List[str]
    focus_index: int = 0
    message: Optional[Notice] = None
    outcome: Optional[str] = None
    redirect: Optional[str] = None
