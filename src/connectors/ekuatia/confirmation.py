"""Human-in-the-loop confirmation for state-changing actions.

Persisting an issuer configuration and submitting an invoice both require an
explicit approval through an :class:`IConfirmationChannel`. The gate has no
override path: anything other than an explicit ``True`` aborts the action
with :class:`UserCancelled` before any side effect happens.
"""

import asyncio
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from config.logger import logger
from .errors import UserCancelled
from .interfaces import ConfirmationKind, IConfirmationChannel

APPROVAL_ANSWERS = frozenset({"s", "si", "sí", "y", "yes"})


class ConfirmationGate:
    """Invokes the confirmation channel and enforces its answer."""

    def __init__(self, channel: IConfirmationChannel):
        self.channel = channel
        self.logger = logger.bind(component="confirmation_gate")

    async def require(
        self,
        kind: ConfirmationKind,
        proposal: Any,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Ask for approval and return only if it was granted.

        Cancelling the pending request propagates ``CancelledError`` to the
        caller; the gated action is never performed.

        Raises:
            UserCancelled: On a negative or missing answer.
        """
        context = dict(context or {})
        self.logger.info("confirmation_requested", kind=kind.value, context=_loggable(context))

        answer = await self.channel.request_confirmation(kind, proposal, context)

        if answer is not True:
            self.logger.info("confirmation_denied", kind=kind.value, answer=repr(answer))
            raise UserCancelled(
                "La operación no fue confirmada por el contribuyente",
                context={"confirmation_kind": kind.value, **context},
            )

        self.logger.info("confirmation_granted", kind=kind.value)


class ConsoleConfirmationChannel(IConfirmationChannel):
    """Terminal prompt channel.

    The prompt runs in a worker thread so the event loop keeps serving other
    taxpayers while the user reads the proposal.
    """

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print,
    ):
        self._input = input_func
        self._output = output_func

    async def request_confirmation(
        self,
        kind: ConfirmationKind,
        proposal: Any,
        context: Dict[str, Any],
    ) -> bool:
        self._output(render_proposal(kind, proposal))
        answer = await asyncio.to_thread(self._input, "¿Confirma la operación? [s/N]: ")
        return (answer or "").strip().lower() in APPROVAL_ANSWERS


def render_proposal(kind: ConfirmationKind, proposal: Any) -> str:
    """Format a proposal as indented ``key: value`` lines."""
    title = {
        ConfirmationKind.CONFIGURATION: "Configuración propuesta",
        ConfirmationKind.INVOICE: "Factura a emitir",
    }[kind]
    data = asdict(proposal) if is_dataclass(proposal) else proposal
    lines = [f"=== {title} ==="]
    lines.extend(_render(data, indent=1))
    return "\n".join(lines)


def _render(data: Any, indent: int):
    pad = "  " * indent
    if isinstance(data, dict):
        for key, value in data.items():
            if key in ("codigo_seguridad_contribuyente", "csc"):
                value = "****"
            if isinstance(value, (dict, list)):
                yield f"{pad}{key}:"
                yield from _render(value, indent + 1)
            else:
                yield f"{pad}{key}: {_scalar(value)}"
    elif isinstance(data, list):
        for index, value in enumerate(data, start=1):
            yield f"{pad}- [{index}]"
            yield from _render(value, indent + 1)
    else:
        yield f"{pad}{_scalar(data)}"


def _scalar(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _loggable(context: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in context.items() if isinstance(v, (str, int, float, bool))}
