"""
FastAPI dependencies for the verification page controller.

These dependencies identify the browser and hand out the shared registry and
the upstream API client.
"""

import uuid
from dataclasses import dataclass
from fastapi import Request, Response

from otpverify.core.config import settings
from otpverify.core.registry import SessionRegistry
from otpverify.services.verification_api import VerificationAPI

# Process-wide registry of verification sessions
registry = SessionRegistry()


@dataclass
class BrowserContext:
    device_id: str
    session_id: str


def get_registry() -> SessionRegistry:
    return registry


def get_verification_api() -> VerificationAPI:
    return VerificationAPI()


def get_browser_context(request: Request, response: Response) -> BrowserContext:
    """
    Read the device and session cookies, issuing any that are missing.

    The device cookie is long-lived (durable scope); the session cookie has
    no max-age and disappears with the browser (ephemeral scope).
    """
    device_id = request.cookies.get(settings.DEVICE_COOKIE_NAME)
    session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)

    if not device_id:
        device_id = uuid.uuid4().hex
        response.set_cookie(
            settings.DEVICE_COOKIE_NAME,
            device_id,
            max_age=settings.DEVICE_COOKIE_MAX_AGE_DAYS * 24 * 3600,
            httponly=True,
            samesite="lax",
        )
    if not session_id:
        session_id = uuid.uuid4().hex
        response.set_cookie(
            settings.SESSION_COOKIE_NAME,
            session_id,
            httponly=True,
            samesite="lax",
        )

    return BrowserContext(device_id=device_id, session_id=session_id)
