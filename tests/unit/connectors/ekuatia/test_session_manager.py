"""Tests for the session manager state machine."""

import asyncio

import pytest

from connectors.ekuatia.errors import AuthenticationFailure, TransportFailure
from connectors.ekuatia.interfaces import RucStatus
from connectors.ekuatia.session import SessionManager, SessionState
from tests.fixtures.ekuatia_fakes import (
    TAXPAYER_ID,
    FakeRemoteService,
    create_credentials,
    create_profile,
)


@pytest.fixture
def manager(remote):
    return SessionManager(remote)


class TestSessionManager:
    """Tests for authentication and session lifecycle."""

    def test_starts_unauthenticated(self, manager):
        assert manager.state == SessionState.UNAUTHENTICATED
        assert manager.session is None

    def test_require_session_without_login(self, manager):
        with pytest.raises(AuthenticationFailure) as exc_info:
            manager.require_session()

        assert exc_info.value.code == "SESSION_REQUIRED"

    @pytest.mark.asyncio
    async def test_successful_authentication(self, manager, remote, credentials):
        session = await manager.authenticate(credentials)

        assert manager.state == SessionState.AUTHENTICATED
        assert session.taxpayer_id == TAXPAYER_ID
        assert session.token == "session_token_1"
        assert manager.require_session() is session
        assert manager.session_cache.profile == remote.profile
        assert manager.session_cache.establishment.city == "Asunción (distrito)"

    @pytest.mark.asyncio
    async def test_wrong_password(self, manager, remote):
        with pytest.raises(AuthenticationFailure) as exc_info:
            await manager.authenticate(create_credentials(password="wrong"))

        assert exc_info.value.code == "INVALID_CREDENTIALS"
        assert manager.state == SessionState.UNAUTHENTICATED
        assert remote.login_calls == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"username": "5452-1"},
            {"username": ""},
            {"username": "\u0665\u0664\u0665\u0662"},
            {"username": "\uff15\uff14\uff15\uff12"},
            {"password": ""},
            {"emission_mode": "FACTURADOR"},
        ],
    )
    async def test_malformed_credentials_never_reach_the_service(self, manager, remote, overrides):
        with pytest.raises(AuthenticationFailure) as exc_info:
            await manager.authenticate(create_credentials(**overrides))

        assert exc_info.value.code == "INVALID_CREDENTIALS"
        assert remote.login_calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [RucStatus.INACTIVO, RucStatus.SUSPENDIDO])
    async def test_inactive_ruc_is_rejected(self, credentials, status):
        manager = SessionManager(FakeRemoteService(profile=create_profile(ruc_status=status)))

        with pytest.raises(AuthenticationFailure) as exc_info:
            await manager.authenticate(credentials)

        assert exc_info.value.code == "RUC_INACTIVE"
        assert exc_info.value.context["current_status"] == status.value
        assert manager.state == SessionState.UNAUTHENTICATED
        assert manager.session_cache.is_empty

    @pytest.mark.asyncio
    async def test_enrollment_not_approved(self, manager, remote, credentials):
        remote.login_error = AuthenticationFailure(
            "Solicitud de Timbrado no aprobada", code="APPROVAL_NOT_FOUND"
        )

        with pytest.raises(AuthenticationFailure) as exc_info:
            await manager.authenticate(credentials)

        assert exc_info.value.code == "APPROVAL_NOT_FOUND"
        assert manager.state == SessionState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_unclassified_login_error_is_classified(self, manager, remote, credentials):
        remote.login_error = asyncio.TimeoutError()

        with pytest.raises(TransportFailure) as exc_info:
            await manager.authenticate(credentials)

        assert exc_info.value.code == "TIMEOUT"
        assert manager.state == SessionState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_ensure_authenticated_reuses_session(self, manager, remote, credentials):
        first = await manager.ensure_authenticated(credentials)
        second = await manager.ensure_authenticated(credentials)

        assert first is second
        assert remote.login_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_login(self, manager, remote, credentials):
        sessions = await asyncio.gather(
            *(manager.ensure_authenticated(credentials) for _ in range(5))
        )

        assert remote.login_calls == 1
        assert all(s is sessions[0] for s in sessions)

    @pytest.mark.asyncio
    async def test_invalidate_forces_new_login(self, manager, remote, credentials):
        await manager.ensure_authenticated(credentials)
        manager.session_cache.modality = "BASICA"

        manager.invalidate()

        assert manager.state == SessionState.UNAUTHENTICATED
        assert manager.session_cache.is_empty

        session = await manager.ensure_authenticated(credentials)
        assert session.token == "session_token_2"
        assert remote.login_calls == 2

    @pytest.mark.asyncio
    async def test_reauthentication_replaces_session(self, manager, credentials):
        first = await manager.authenticate(credentials)
        second = await manager.authenticate(credentials)

        assert first.token != second.token
        assert manager.session is second

    @pytest.mark.asyncio
    async def test_failed_reauthentication_drops_previous_session(self, manager, remote, credentials):
        await manager.authenticate(credentials)
        remote.login_error = TransportFailure("Servicio no disponible", code="TEMPORARY_UNAVAILABLE")

        with pytest.raises(TransportFailure):
            await manager.authenticate(credentials)

        assert manager.session is None

    @pytest.mark.asyncio
    async def test_logout(self, manager, credentials):
        await manager.authenticate(credentials)

        await manager.logout()

        assert manager.state == SessionState.UNAUTHENTICATED
        with pytest.raises(AuthenticationFailure):
            manager.require_session()
