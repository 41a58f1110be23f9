"""
HTTP client for the upstream auth backend's OTP endpoints.

- POST /api/auth/verify-otp  {email, otp}
- POST /api/auth/resend-otp  {email}

Successful (2xx) JSON replies are returned; everything else is raised as one of
the verification errors so the session can map it to a user-facing outcome.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from otpverify.core.config import settings
from otpverify.core.errors import ProtocolError, RejectionKind, ServerRejection, TransportError
from otpverify.schemas.verification import ApiReply, ResendOtpRequest, VerifyOtpRequest

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Request timed out. Please check your connection and try again."
CONNECTION_MESSAGE = "Cannot connect to server. Please check your internet connection."
SERVER_ERROR_MESSAGE = "Server error. Please try again later."


def classify_rejection(status_code: int, reply: ApiReply) -> RejectionKind:
    """
    Classify a non-2xx reply.

    Order matters: the two 400 message checks win over the attempt count,
    and 423/429 always mean lockout.
    """
    msg = (reply.msg or "").lower()
    if status_code == 400 and "already verified" in msg:
        return RejectionKind.ALREADY_VERIFIED
    if status_code == 400 and "no user found" in msg:
        return RejectionKind.NOT_FOUND
    if status_code in (423, 429):
        return RejectionKind.LOCKOUT
    if reply.attempts_remaining is not None:
        return RejectionKind.INCORRECT_CODE
    return RejectionKind.GENERIC


class VerificationAPI:
    """
    Async client for the verification endpoints.

    Args:
        base_url: Auth backend base URL (defaults to settings.AUTH_API_BASE_URL)
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.AUTH_API_BASE_URL
        self.timeout = settings.REQUEST_TIMEOUT_SECONDS if timeout is None else timeout
        self.transport = transport

    async def verify_otp(self, email: str, code: str) -> ApiReply:
        """
        Submit a code for verification.

        Returns:
            ApiReply: The success reply

        Raises:
            ServerRejection: Non-2xx reply, classified
            TransportError: Timeout or connection failure
            ProtocolError: Non-JSON or malformed reply
        """
        body = VerifyOtpRequest(email=email, otp=code)
        return await self._post(settings.VERIFY_OTP_PATH, body.model_dump())

    async def resend_otp(self, email: str) -> ApiReply:
        """Ask the backend to issue a fresh code (same errors as verify_otp)"""
        body = ResendOtpRequest(email=email)
        return await self._post(settings.RESEND_OTP_PATH, body.model_dump())

    async def _post(self, path: str, payload: Dict[str, Any]) -> ApiReply:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport
            ) as client:
                response = await client.post(path, json=payload)
        except httpx.TimeoutException as e:
            logger.warning(f"Request to {path} timed out: {e}")
            raise TransportError(TIMEOUT_MESSAGE, timed_out=True) from e
        except httpx.HTTPError as e:
            logger.warning(f"Request to {path} failed: {e}")
            raise TransportError(CONNECTION_MESSAGE) from e

        logger.info(f"POST {path} -> {response.status_code}")
        reply = self._parse(path, response)

        if not response.is_success:
            kind = classify_rejection(response.status_code, reply)
            raise ServerRejection(
                reply.msg or "",
                kind=kind,
                status_code=response.status_code,
                payload=reply.model_dump(by_alias=True, exclude_none=True),
            )
        return reply

    def _parse(self, path: str, response: httpx.Response) -> ApiReply:
        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            logger.error(f"Non-JSON reply from {path} (status {response.status_code}, content-type {content_type!r})")
            raise ProtocolError(SERVER_ERROR_MESSAGE)

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Invalid JSON from {path}: {e}")
            raise ProtocolError(SERVER_ERROR_MESSAGE) from e

        if not isinstance(data, dict):
            logger.error(f"Unexpected reply shape from {path}: {type(data).__name__}")
            raise ProtocolError(SERVER_ERROR_MESSAGE)

        try:
            return ApiReply.model_validate(data)
        except PydanticValidationError as e:
            logger.error(f"Unexpected reply fields from {path}: {e}")
            raise ProtocolError(SERVER_ERROR_MESSAGE) from e
