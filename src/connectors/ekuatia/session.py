"""Session management for the Ekuatia service.

The session manager owns authentication and the session token lifecycle for
one taxpayer. It is a small state machine:

    UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED
           ^                  |                |
           +------ failure ---+-- invalidate --+

No operation that needs a session may run unless the manager is
AUTHENTICATED. Authentication failures are terminal for the call; the
manager never retries a login on its own.
"""

import asyncio
import re
from datetime import datetime
from enum import Enum
from typing import Optional

from config.logger import logger
from .cache import SessionScopedCache
from .errors import AuthenticationFailure, EkuatiaError, classify_exception
from .interfaces import EMISSION_MODE, Credentials, IRemoteInvoicingService, Session

RUC_DIGITS = re.compile(r"[0-9]+")


class SessionState(Enum):
    """Lifecycle states of a taxpayer session."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


class SessionManager:
    """Authenticates a taxpayer and keeps the session token.

    Attributes:
        remote: Remote Ekuatia service used for login.
        session_cache: Level-1 cache cleared whenever the session ends.
    """

    def __init__(
        self,
        remote: IRemoteInvoicingService,
        session_cache: Optional[SessionScopedCache] = None,
    ):
        self.remote = remote
        self.session_cache = session_cache or SessionScopedCache()
        self._state = SessionState.UNAUTHENTICATED
        self._session: Optional[Session] = None
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="session_manager")

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state == SessionState.AUTHENTICATED

    @property
    def session(self) -> Optional[Session]:
        return self._session if self.is_authenticated else None

    def require_session(self) -> Session:
        """Return the live session.

        Raises:
            AuthenticationFailure: ``SESSION_REQUIRED`` unless authenticated.
        """
        if not self.is_authenticated or self._session is None:
            raise AuthenticationFailure(
                "No hay una sesión activa",
                code="SESSION_REQUIRED",
                context={"state": self._state.value},
            )
        return self._session

    async def ensure_authenticated(self, credentials: Credentials) -> Session:
        """Return the live session, authenticating first if needed.

        Concurrent callers wait on the same lock, so a single login serves
        all of them.
        """
        async with self._lock:
            if self.is_authenticated and self._session is not None:
                return self._session
            return await self._authenticate(credentials)

    async def authenticate(self, credentials: Credentials) -> Session:
        """Log in with the given credentials, replacing any current session.

        Raises:
            AuthenticationFailure: Invalid credentials, enrollment not
                approved, or RUC not active.
            TransportFailure: If the service could not be reached.
        """
        async with self._lock:
            return await self._authenticate(credentials)

    async def _authenticate(self, credentials: Credentials) -> Session:
        self._reset()
        self._check_credentials(credentials)
        self._state = SessionState.AUTHENTICATING
        self.logger.info("authentication_started", taxpayer_id=credentials.username)

        try:
            result = await self.remote.login(credentials)

            if not result.profile.is_active:
                raise AuthenticationFailure(
                    "RUC no está en estado Activo",
                    code="RUC_INACTIVE",
                    context={
                        "ruc": credentials.username,
                        "current_status": result.profile.ruc_status.value,
                    },
                )
        except EkuatiaError as e:
            self._reset()
            self.logger.warning(
                "authentication_failed",
                taxpayer_id=credentials.username,
                code=e.code,
            )
            raise
        except asyncio.CancelledError:
            self._reset()
            raise
        except Exception as e:
            self._reset()
            classified = classify_exception(e, ruc=credentials.username, operation="login")
            self.logger.error(
                "authentication_error",
                taxpayer_id=credentials.username,
                error=str(e),
            )
            raise classified from e

        self._session = Session(
            token=result.session_token,
            taxpayer_id=credentials.username,
            created_at=datetime.now(),
        )
        self.session_cache.session_token = result.session_token
        self.session_cache.profile = result.profile
        self.session_cache.establishment = result.establishment
        self._state = SessionState.AUTHENTICATED

        self.logger.info("authentication_succeeded", taxpayer_id=credentials.username)
        return self._session

    def invalidate(self, reason: str = "token_rejected") -> None:
        """Drop the session so the next operation re-authenticates."""
        was_authenticated = self.is_authenticated
        self._reset()
        if was_authenticated:
            self.logger.info("session_invalidated", reason=reason)

    async def logout(self) -> None:
        """End the session explicitly."""
        async with self._lock:
            self.invalidate(reason="logout")

    def _reset(self) -> None:
        self._state = SessionState.UNAUTHENTICATED
        self._session = None
        self.session_cache.clear()

    @staticmethod
    def _check_credentials(credentials: Credentials) -> None:
        username = credentials.username.strip()
        if not RUC_DIGITS.fullmatch(username):
            raise AuthenticationFailure(
                "El usuario debe ser el RUC sin dígito verificador",
                code="INVALID_CREDENTIALS",
                context={"ruc": credentials.username, "field": "username"},
            )
        if not credentials.password:
            raise AuthenticationFailure(
                "Clave de Acceso vacía",
                code="INVALID_CREDENTIALS",
                context={"ruc": credentials.username, "field": "password"},
            )
        if credentials.emission_mode != EMISSION_MODE:
            raise AuthenticationFailure(
                f"Modo de emisión no soportado: {credentials.emission_mode}",
                code="INVALID_CREDENTIALS",
                context={"ruc": credentials.username, "field": "emission_mode"},
            )
