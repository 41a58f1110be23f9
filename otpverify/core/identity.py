"""
Identity resolution for the verification flow.

Determines which email address a verification session belongs to by trying
sources in priority order:
1. durable store (pendingVerificationEmail)
2. ephemeral store (pendingVerificationEmail)
3. the "email" query parameter of the current page

If all three are empty the caller must collect the email manually.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import quote, unquote

from otpverify.core.errors import ValidationError
from otpverify.core.storage import PENDING_EMAIL_KEY, OTP_EXPIRY_KEY, StorageScopes

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

VERIFY_PAGE_PATH = "/verify"

# (source name, getter) pairs, tried in order
IdentitySource = Tuple[str, Callable[[], Optional[str]]]


@dataclass(frozen=True)
class ResolvedIdentity:
    email: str
    source: str


@dataclass(frozen=True)
class NeedsManualEntry:
    message: str = (
        "No email address found in session. This usually happens when your browser "
        "cleared stored data or you navigated directly to this page."
    )


class ManualEntryExit(str, Enum):
    """The three ways out of the manual email fallback"""
    CONTINUE = "continue"
    REGISTER = "register"
    LOGIN = "login"


Resolution = Union[ResolvedIdentity, NeedsManualEntry]


def mask_email(email: str) -> str:
    """
    Mask the local part of an email for display and logs.

    "johndoe@example.com" -> "jo*****@example.com". Local parts of three
    characters or fewer are returned unchanged.
    """
    if not email or "@" not in email:
        return email
    local, domain = email.split("@", 1)
    if len(local) <= 3:
        return email
    return f"{local[:2]}{'*' * (len(local) - 2)}@{domain}"


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def verification_path(email: str) -> str:
    """Page path that carries the email forward as a query parameter"""
    return f"{VERIFY_PAGE_PATH}?email={quote(email, safe='')}"


def resolve(sources: Sequence[IdentitySource]) -> Resolution:
    """
    Resolve an identity from an explicit priority list.

    The first source returning a non-empty (after trimming) value wins.

    Args:
        sources: Ordered (name, getter) pairs

    Returns:
        ResolvedIdentity or NeedsManualEntry
    """
    for name, getter in sources:
        value = getter()
        if value and value.strip():
            return ResolvedIdentity(email=value.strip(), source=name)
    return NeedsManualEntry()


class IdentityResolver:
    """
    Resolves the pending-verification email across storage scopes and the URL.

    Also owns the manual-entry fallback, which writes the email back into
    both scopes so a reload does not show the fallback again.
    """

    def __init__(self, scopes: StorageScopes, query_params: Optional[Mapping[str, str]] = None):
        self.scopes = scopes
        self.query_params = query_params or {}

    def _query_email(self) -> Optional[str]:
        raw = self.query_params.get("email")
        if not raw:
            return None
        return unquote(raw)

    def sources(self) -> List[IdentitySource]:
        return [
            ("durable", lambda: self.scopes.durable.get(PENDING_EMAIL_KEY)),
            ("ephemeral", lambda: self.scopes.ephemeral.get(PENDING_EMAIL_KEY)),
            ("query", self._query_email),
        ]

    def resolve(self) -> Resolution:
        result = resolve(self.sources())
        if isinstance(result, ResolvedIdentity):
            logger.info(f"Verification email resolved from {result.source}: {mask_email(result.email)}")
        else:
            logger.warning("No verification email found in durable store, ephemeral store or URL")
        return result

    def continue_with_manual_email(self, email: str) -> ResolvedIdentity:
        """
        Accept a manually entered email and persist it to both scopes.

        Raises:
            ValidationError: If the email does not have a valid shape
        """
        email = (email or "").strip()
        if not is_valid_email(email):
            raise ValidationError("Please enter a valid email address.")

        self.scopes.durable.set(PENDING_EMAIL_KEY, email)
        self.scopes.ephemeral.set(PENDING_EMAIL_KEY, email)
        logger.info(f"Email manually entered and stored: {mask_email(email)}")
        return ResolvedIdentity(email=email, source="manual")

    def clear(self) -> None:
        """Forget the pending email and the code expiry in both scopes"""
        for store in (self.scopes.durable, self.scopes.ephemeral):
            store.remove(PENDING_EMAIL_KEY)
            store.remove(OTP_EXPIRY_KEY)
