"""
Verification page endpoints.

Serves the state of the one-time-passcode verification page and accepts its
interactions:
- GET  /verify: page load (identity resolution, countdown start/restore)
- POST /verify/email: manual email entry when no identity was found
- POST /verify/input: digit, backspace, paste and arrow events
- POST /verify/submit: verify the entered code
- POST /verify/resend: request a new code after expiry
- POST /verify/abandon: leave for registration or login
- GET  /login/notice: consume the notice queued for the login screen
"""

import logging
from typing import Dict, Optional
from fastapi import APIRouter, Depends, HTTPException, status

from otpverify.core.deps import BrowserContext, get_browser_context, get_registry, get_verification_api
from otpverify.core.errors import ValidationError
from otpverify.core.identity import ManualEntryExit, verification_path
from otpverify.core.registry import SessionRegistry
from otpverify.schemas.verification import (
    AbandonRequest,
    CodeInputEvent,
    ManualEmailRequest,
    Notice,
    VerificationView,
)
from otpverify.services.verification_api import VerificationAPI

router = APIRouter(prefix="/verification", tags=["Email Verification"])
logger = logging.getLogger(__name__)


@router.get("/verify", response_model=VerificationView)
async def load_verification_page(
    email: Optional[str] = None,
    browser: BrowserContext = Depends(get_browser_context),
    registry: SessionRegistry = Depends(get_registry),
    api: VerificationAPI = Depends(get_verification_api)
):
    """
    Load the verification page.

    Every load builds a fresh session: the identity is resolved again and the
    countdown is restored from the persisted expiry.
    """
    query_params = {"email": email} if email else {}
    session = registry.open(browser.device_id, browser.session_id, api, query_params)
    return session.to_view()


@router.post("/verify/email", response_model=VerificationView)
async def submit_manual_email(
    request: ManualEmailRequest,
    browser: BrowserContext = Depends(get_browser_context),
    registry: SessionRegistry = Depends(get_registry),
    api: VerificationAPI = Depends(get_verification_api)
):
    """
    Continue with a manually entered email.

    Raises:
        HTTPException 400: Email does not have a valid shape
    """
    session = registry.get_or_open(browser.device_id, browser.session_id, api)
    try:
        identity = session.continue_with_manual_email(request.email)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.message
        )

    view = session.to_view()
    return view.model_copy(update={"redirect": verification_path(identity.email)})


@router.post("/verify/input", response_model=VerificationView)
async def handle_code_input(
    event: CodeInputEvent,
    browser: BrowserContext = Depends(get_browser_context),
    registry: SessionRegistry = Depends(get_registry),
    api: VerificationAPI = Depends(get_verification_api)
):
    """Apply one interaction with the six code inputs"""
    session = registry.get_or_open(browser.device_id, browser.session_id, api)
    try:
        if event.action == "digit":
            session.enter_digit(event.index, event.value)
        elif event.action == "backspace":
            session.backspace(event.index)
        elif event.action == "paste":
            session.paste(event.value)
        elif event.action == "left":
            session.move_left(event.index)
        else:
            session.move_right(event.index)
    except IndexError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    return session.to_view()


@router.post("/verify/submit", response_model=VerificationView)
async def submit_code(
    browser: BrowserContext = Depends(get_browser_context),
    registry: SessionRegistry = Depends(get_registry),
    api: VerificationAPI = Depends(get_verification_api)
):
    """
    Verify the entered code.

    Always answers 200: the outcome, message and redirect live in the view.
    """
    session = registry.get_or_open(browser.device_id, browser.session_id, api)
    outcome = await session.submit()
    logger.info(f"Submit outcome: {outcome.kind.value}")
    view = session.to_view()
    registry.release_if_finished(browser.device_id, browser.session_id)
    return view


@router.post("/verify/resend", response_model=VerificationView)
async def resend_code(
    browser: BrowserContext = Depends(get_browser_context),
    registry: SessionRegistry = Depends(get_registry),
    api: VerificationAPI = Depends(get_verification_api)
):
    """Request a new code (only once the current code has expired)"""
    session = registry.get_or_open(browser.device_id, browser.session_id, api)
    outcome = await session.resend()
    logger.info(f"Resend outcome: {outcome.kind.value}")
    return session.to_view()


@router.post("/verify/abandon")
async def abandon_verification(
    request: AbandonRequest,
    browser: BrowserContext = Depends(get_browser_context),
    registry: SessionRegistry = Depends(get_registry),
    api: VerificationAPI = Depends(get_verification_api)
) -> Dict[str, str]:
    """
    Leave the flow for registration or login.

    Clears the pending email and expiry from both storage scopes.
    """
    session = registry.get_or_open(browser.device_id, browser.session_id, api)
    session.abandon()
    registry.discard(browser.device_id, browser.session_id)

    destination = ManualEntryExit(request.destination)
    logger.info(f"Verification abandoned, going to {destination.value}")
    return {"redirect": destination.value}


@router.get("/login/notice", response_model=Optional[Notice])
async def consume_login_notice(
    browser: BrowserContext = Depends(get_browser_context),
    registry: SessionRegistry = Depends(get_registry)
):
    """Return the notice queued for the login screen, exactly once"""
    return registry.notices(browser.session_id).consume()
