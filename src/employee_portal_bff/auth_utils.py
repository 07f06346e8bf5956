# src/employee_portal_bff/auth_utils.py

import ipaddress
import logging
from typing import Optional, Union

from fastapi import Request

from .config import Settings
from .errors import InvalidCredentialsError, TransportError, UpstreamError
from .proxy import ApiFailure, ApiSuccess, UpstreamClient
from .session_data import PortalUser
from .session_store import SessionContext, SessionPhase

logger = logging.getLogger(__name__)

UNKNOWN_IP = "0.0.0.0"


def _parse_ip(value: Optional[str]) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    if not value:
        return None
    try:
        return ipaddress.ip_address(value.strip())
    except ValueError:
        return None


async def resolve_client_ip(request: Optional[Request], upstream: UpstreamClient) -> str:
    """
    Best-effort public address of the portal user.
    Never raises: any failure yields 0.0.0.0 so login can still proceed.
    """
    if request is not None:
        forwarded_for = request.headers.get("x-forwarded-for", "")
        first_hop = _parse_ip(forwarded_for.split(",")[0]) if forwarded_for else None
        if first_hop is not None:
            return str(first_hop)

        peer = _parse_ip(request.client.host if request.client else None)
        if peer is not None and peer.is_global:
            return str(peer)

    try:
        data = await upstream.get_json(upstream.settings.IP_LOOKUP_URL)
        looked_up = _parse_ip(data.get("ip") if isinstance(data, dict) else None)
    except (TransportError, ValueError) as e:
        logger.warning(f"AUTH: Could not fetch IP, defaulting to {UNKNOWN_IP}: {e}")
        return UNKNOWN_IP
    if looked_up is None:
        logger.warning(f"AUTH: IP lookup returned no usable address, defaulting to {UNKNOWN_IP}")
        return UNKNOWN_IP
    return str(looked_up)


class SessionController:
    """
    Login/logout against the upstream API for one session at a time.

    Login and logout are not serialized: the session has a single writer, and
    if two attempts overlap, whichever finishes last decides the session.
    """

    def __init__(self, settings: Settings, upstream: UpstreamClient):
        self.settings = settings
        self.upstream = upstream

    async def login(
            self,
            session: SessionContext,
            kode_user: str,
            password: str,
            request: Optional[Request] = None,
    ) -> PortalUser:
        session.phase = SessionPhase.AUTHENTICATING
        ip_address = await resolve_client_ip(request, self.upstream)
        payload = {
            "kode_user": kode_user,
            "password": password,
            "ip": ip_address,
            "aplikasi_id": self.settings.APP_ID,
        }

        logger.info(f"AUTH: Login attempt for kode_user={kode_user} from {ip_address}")
        try:
            result = await self.upstream.post(self.settings.LOGIN_ENDPOINT, payload)
        except TransportError:
            session.clear()
            raise

        if isinstance(result, ApiFailure):
            session.clear()
            if result.status_code == 401:
                logger.info(f"AUTH: Invalid credentials for kode_user={kode_user}")
                raise InvalidCredentialsError(self.settings.INVALID_CREDENTIALS_MESSAGE)
            logger.warning(f"AUTH: Login refused for kode_user={kode_user}: {result.status_code} - {result.message}")
            raise UpstreamError(result.message or "Login failed", status_code=result.status_code)

        if not (isinstance(result, ApiSuccess) and result.enveloped):
            session.clear()
            logger.warning(f"AUTH: Login response for kode_user={kode_user} has no success envelope")
            raise UpstreamError("Login failed", status_code=502)

        data = result.data
        try:
            token = data["token"]
            user = PortalUser(id=data["id"], nama=data["nama"])
        except (KeyError, TypeError, ValueError) as e:
            session.clear()
            logger.warning(f"AUTH: Login response for kode_user={kode_user} is missing token or identity: {e}")
            raise UpstreamError("Login failed", status_code=502) from e
        if not token:
            session.clear()
            raise UpstreamError("Login failed", status_code=502)

        session.establish(token, user)
        logger.info(f"AUTH: User '{user.nama}' (id: {user.id}) authenticated.")
        return user

    async def logout(self, session: SessionContext) -> None:
        session.phase = SessionPhase.LOGGING_OUT
        user = session.user
        token = session.token
        if user is not None and user.id and token:
            try:
                result = await self.upstream.post(
                    self.settings.LOGOUT_ENDPOINT,
                    {"id_freelance": user.id},
                    bearer=token,
                )
                if isinstance(result, ApiFailure):
                    logger.warning(f"AUTH: Logout API error: {result.status_code} - {result.message}")
            except TransportError as e:
                logger.warning(f"AUTH: Logout API error: {e}")

        session.clear()
        logger.info(f"AUTH: Session {session.session_id[:8]}... cleared.")
