############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# identity.py: Caller identity resolution (user, guest session, IP, fingerprint)
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Identity resolution for metered requests.

Every request gets an ``Identity``: the authenticated user (if the signed
session cookie is valid), a guest session id (minted on first contact), the
client IP and an optional client-supplied device fingerprint. Guests are
metered on all of these facets so clearing cookies alone does not reset
their quota.
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Request, Response
from itsdangerous import BadSignature, URLSafeTimedSerializer
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db import crud
from backend.app.logging_config import get_logger
from backend.app.settings import get_settings

logger = get_logger(__name__)

UNKNOWN = "unknown"


@dataclass
class Identity:
    """Who is calling, as far as the metering layer can tell."""

    session_id: str
    ip_address: str
    user_agent: str
    user_id: Optional[int] = None
    device_fingerprint: Optional[str] = None
    is_admin: bool = False
    new_session: bool = False

    @property
    def is_guest(self) -> bool:
        return self.user_id is None


def _get_session_serializer() -> URLSafeTimedSerializer:
    """Get a timed serializer for user session cookies."""
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="session")


def get_session_user_id(request: Request) -> Optional[int]:
    """Get user ID from the signed session cookie, or None if absent/invalid."""
    settings = get_settings()
    session_data = request.cookies.get(settings.user_session_cookie_name)
    if not session_data:
        return None
    try:
        serializer = _get_session_serializer()
        return int(serializer.loads(session_data, max_age=settings.user_session_max_age))
    except (BadSignature, ValueError, TypeError):
        return None


def sign_user_session(user_id: int) -> str:
    """Signed session cookie value for ``user_id``."""
    return _get_session_serializer().dumps(user_id)


def create_user_session_cookie(response: Response, user_id: int) -> None:
    """Set the signed user session cookie (the login flow's half of the contract)."""
    settings = get_settings()
    signed_value = sign_user_session(user_id)
    response.set_cookie(
        key=settings.user_session_cookie_name,
        value=signed_value,
        httponly=True,
        secure=settings.is_production,
        samesite=settings.session_cookie_samesite,
        max_age=settings.user_session_max_age,
        path="/",
    )


def get_client_ip(request: Request) -> str:
    """
    Best-effort client IP.

    Order: first hop of X-Forwarded-For, X-Real-IP, the hosting platform's
    header, the socket peer, then "unknown". Never raises.
    """
    settings = get_settings()
    headers = request.headers

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    for header in ("x-real-ip", settings.platform_ip_header):
        value = (headers.get(header) or "").strip()
        if value:
            return value

    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN


def get_user_agent(request: Request) -> str:
    """User-Agent header or "unknown"."""
    return request.headers.get("user-agent") or UNKNOWN


def get_device_fingerprint(request: Request) -> Optional[str]:
    """Client-supplied fingerprint, trimmed and capped. Unverified."""
    settings = get_settings()
    value = (request.headers.get(settings.fingerprint_header) or "").strip()
    if not value:
        return None
    return value[: settings.fingerprint_max_length]


def _valid_session_id(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


async def resolve_identity(request: Request, db: AsyncSession) -> Identity:
    """Build the Identity for a request, minting a guest session if needed."""
    settings = get_settings()

    session_id = request.cookies.get(settings.guest_session_cookie_name)
    new_session = False
    if not _valid_session_id(session_id):
        session_id = str(uuid.uuid4())
        new_session = True

    identity = Identity(
        session_id=session_id,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
        device_fingerprint=get_device_fingerprint(request),
        new_session=new_session,
    )

    user_id = get_session_user_id(request)
    if user_id is not None:
        user = await crud.get_user_by_id(db, user_id)
        if user and user.is_active:
            identity.user_id = user.id
            identity.is_admin = user.is_admin
        else:
            logger.info("session_user_rejected", user_id=user_id)

    return identity


def apply_guest_cookie(response: Response, identity: Identity) -> None:
    """Set (or refresh) the guest session cookie on a response."""
    settings = get_settings()
    response.set_cookie(
        key=settings.guest_session_cookie_name,
        value=identity.session_id,
        httponly=True,
        secure=settings.is_production,
        samesite=settings.session_cookie_samesite,
        max_age=settings.guest_session_max_age,
        path="/",
    )
