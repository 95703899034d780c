"""Tests for the confirmation gate and the console channel."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from connectors.ekuatia.confirmation import (
    ConfirmationGate,
    ConsoleConfirmationChannel,
    render_proposal,
)
from connectors.ekuatia.errors import UserCancelled
from connectors.ekuatia.interfaces import (
    ConfigurationProposal,
    ConfirmationKind,
    IConfirmationChannel,
)
from tests.fixtures.ekuatia_fakes import (
    TAXPAYER_ID,
    ScriptedConfirmationChannel,
    create_configuration,
)


@pytest.fixture
def proposal():
    return ConfigurationProposal(
        taxpayer_id=TAXPAYER_ID,
        business_name="Teresa De Jesus",
        configuration=create_configuration(),
    )


class TestConfirmationGate:
    """Tests for ConfirmationGate.require."""

    @pytest.mark.asyncio
    async def test_approval_lets_the_action_proceed(self, proposal):
        channel = ScriptedConfirmationChannel()
        gate = ConfirmationGate(channel)

        await gate.require(ConfirmationKind.CONFIGURATION, proposal, {"taxpayer_id": TAXPAYER_ID})

        kind, seen, context = channel.requests[0]
        assert kind == ConfirmationKind.CONFIGURATION
        assert seen is proposal
        assert context == {"taxpayer_id": TAXPAYER_ID}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("answer", [False, None, "yes", 1])
    async def test_anything_but_true_cancels(self, proposal, answer):
        gate = ConfirmationGate(ScriptedConfirmationChannel(configuration=answer))

        with pytest.raises(UserCancelled) as exc_info:
            await gate.require(ConfirmationKind.CONFIGURATION, proposal, {"taxpayer_id": TAXPAYER_ID})

        assert exc_info.value.code == "USER_CANCELLED"
        assert exc_info.value.context["confirmation_kind"] == "configuration"
        assert exc_info.value.context["taxpayer_id"] == TAXPAYER_ID

    @pytest.mark.asyncio
    async def test_channel_receives_a_copy_of_context(self, proposal):
        channel = AsyncMock(spec=IConfirmationChannel)
        channel.request_confirmation.return_value = True

        await ConfirmationGate(channel).require(ConfirmationKind.INVOICE, proposal)

        channel.request_confirmation.assert_awaited_once_with(ConfirmationKind.INVOICE, proposal, {})

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, proposal):
        class PendingChannel(IConfirmationChannel):
            async def request_confirmation(self, kind, proposal, context):
                await asyncio.Event().wait()

        gate = ConfirmationGate(PendingChannel())
        task = asyncio.create_task(gate.require(ConfirmationKind.INVOICE, proposal))
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestConsoleConfirmationChannel:
    """Tests for the terminal prompt channel."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("typed,expected", [
        ("s", True),
        ("Sí", True),
        (" yes ", True),
        ("n", False),
        ("", False),
        ("tal vez", False),
    ])
    async def test_answers(self, proposal, typed, expected):
        printed = []
        channel = ConsoleConfirmationChannel(input_func=lambda prompt: typed, output_func=printed.append)

        answer = await channel.request_confirmation(ConfirmationKind.CONFIGURATION, proposal, {})

        assert answer is expected
        assert printed[0].startswith("=== Configuración propuesta ===")

    def test_render_masks_security_code(self, proposal):
        rendered = render_proposal(ConfirmationKind.CONFIGURATION, proposal)

        assert "CSC_VALUE_123456" not in rendered
        assert "codigo_seguridad_contribuyente: ****" in rendered
        assert "numero_timbrado: 12561412" in rendered
        assert "tipo_documento: FACTURA ELECTRONICA" in rendered

    def test_render_plain_dict(self):
        rendered = render_proposal(ConfirmationKind.INVOICE, {"total_general": 500000, "items": [{"cantidad": 1}]})

        assert rendered.splitlines() == [
            "=== Factura a emitir ===",
            "  total_general: 500000",
            "  items:",
            "    - [1]",
            "      cantidad: 1",
        ]
