"""Error taxonomy for the Ekuatia invoice agent.

Every failure raised by the agent is an :class:`EkuatiaError` tagged with one
of the closed :class:`ErrorKind` values. Each kind has its own subclass so
callers can catch it directly, while the recovery hint shown to the taxpayer
is static data looked up by kind and code.

Only transport failures caused by timeouts, temporary unavailability or rate
limiting are retryable; every other kind is terminal for the call.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Type


class ErrorKind(Enum):
    """Closed set of failure kinds."""
    AUTHENTICATION = "authentication_failure"
    CONFIGURATION = "configuration_failure"
    CONFIGURATION_RETRIEVAL = "configuration_retrieval_failure"
    INVOICE_VALIDATION = "invoice_validation_failure"
    TRANSPORT = "transport_failure"
    USER_CANCELLED = "user_cancelled"


# Transport codes that may succeed if the same call is attempted again
RETRYABLE_CODES = frozenset({"TIMEOUT", "TEMPORARY_UNAVAILABLE", "RATE_LIMITED"})

DEFAULT_RECOVERY: Dict[ErrorKind, str] = {
    ErrorKind.AUTHENTICATION: "Contacte soporte técnico para asistencia.",
    ErrorKind.CONFIGURATION: "Verifique la configuración e intente nuevamente.",
    ErrorKind.CONFIGURATION_RETRIEVAL: (
        "Intente nuevamente más tarde o contacte soporte técnico."
    ),
    ErrorKind.INVOICE_VALIDATION: "Corrija los datos del documento e intente nuevamente.",
    ErrorKind.TRANSPORT: (
        "Intente nuevamente en unos minutos. Si el problema persiste, contacte soporte."
    ),
    ErrorKind.USER_CANCELLED: "La operación fue cancelada; no se realizaron cambios.",
}

RECOVERY_HINTS: Dict[Tuple[ErrorKind, str], str] = {
    (ErrorKind.AUTHENTICATION, "INVALID_CREDENTIALS"): (
        "Verifique sus credenciales en el sistema Marangatu y reintente."
    ),
    (ErrorKind.AUTHENTICATION, "APPROVAL_NOT_FOUND"): (
        "Complete el proceso de habilitación como facturador electrónico en Marangatu."
    ),
    (ErrorKind.AUTHENTICATION, "RUC_INACTIVE"): (
        "Regularice su situación fiscal en Marangatu antes de continuar."
    ),
    (ErrorKind.AUTHENTICATION, "SESSION_REJECTED"): (
        "La sesión expiró. Vuelva a intentar para iniciar una nueva sesión."
    ),
    (ErrorKind.AUTHENTICATION, "SESSION_REQUIRED"): (
        "Inicie sesión antes de continuar."
    ),
    (ErrorKind.CONFIGURATION, "MULTIPLE_ESTABLISHMENTS"): (
        "El sistema solo soporta un único establecimiento. Actualice su RUC."
    ),
    (ErrorKind.CONFIGURATION, "CERTIFICATE_MISSING"): (
        "Obtenga el Certificado Cualificado de Firma Electrónica (CCFE) "
        "según Resolución DNIT N° 757/2024."
    ),
    (ErrorKind.CONFIGURATION, "CSC_INVALID"): (
        "Contacte la DNIT para actualizar su Código de Seguridad del Contribuyente."
    ),
    (ErrorKind.INVOICE_VALIDATION, "INVALID_DATOS_RECEPTOR"): (
        "Verifique los datos del receptor (RUC y razón social)."
    ),
    (ErrorKind.INVOICE_VALIDATION, "MONTO_NEGATIVO"): (
        "Todos los montos deben ser positivos. Verifique los cálculos."
    ),
    (ErrorKind.INVOICE_VALIDATION, "DOCUMENTO_DUPLICADO"): (
        "Este documento ya fue registrado. Use NOTA_CREDITO para correcciones."
    ),
    (ErrorKind.INVOICE_VALIDATION, "TIMBRADO_EXPIRED"): (
        "El timbrado ha expirado. Solicite un nuevo timbrado en DNIT."
    ),
    (ErrorKind.INVOICE_VALIDATION, "RESUMEN_INCONSISTENTE"): (
        "Los totales del resumen no coinciden con los ítems. Verifique los cálculos."
    ),
    (ErrorKind.INVOICE_VALIDATION, "ESTABLECIMIENTO_INVALIDO"): (
        "Use establecimiento 1 y punto de expedición 1."
    ),
    (ErrorKind.INVOICE_VALIDATION, "FECHA_INVALIDA"): (
        "Ingrese la fecha en formato DD/MM/AAAA."
    ),
    (ErrorKind.TRANSPORT, "TIMEOUT"): (
        "Verifique su conexión a internet e intente nuevamente."
    ),
    (ErrorKind.TRANSPORT, "RATE_LIMITED"): (
        "Se superó el límite de solicitudes. Espere unos minutos antes de reintentar."
    ),
}


def recovery_for(kind: ErrorKind, code: str) -> str:
    """Return the static recovery hint for a kind/code pair."""
    return RECOVERY_HINTS.get((kind, code), DEFAULT_RECOVERY[kind])


class EkuatiaError(Exception):
    """Base class for every classified failure.

    Attributes:
        kind: Closed error kind.
        code: Machine-readable error code.
        message: Human-readable message (Spanish, as reported by the service).
        context: Structured context for logs. Never contains secrets.
        recovery: Static recovery hint for direct display.
        timestamp: ISO timestamp of when the error was raised.
    """

    kind: ErrorKind
    default_code: str = "SYSTEM_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context = dict(context or {})
        self.recovery = recovery_for(self.kind, self.code)
        self.timestamp = datetime.now().isoformat()

    @property
    def retryable(self) -> bool:
        return is_retryable(self)

    def user_message(self) -> str:
        """Message and recovery hint joined for display."""
        return f"{self.message}. {self.recovery}" if self.recovery else self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for structured logging."""
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "recovery": self.recovery,
            "retryable": self.retryable,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class AuthenticationFailure(EkuatiaError):
    """Bad credentials, unapproved enrollment, inactive RUC or rejected token."""
    kind = ErrorKind.AUTHENTICATION
    default_code = "INVALID_CREDENTIALS"


class ConfigurationFailure(EkuatiaError):
    """Issuer configuration violates a constraint or cannot be applied."""
    kind = ErrorKind.CONFIGURATION
    default_code = "INVALID_CONFIGURATION"


class ConfigurationRetrievalFailure(EkuatiaError):
    """Configuration could not be read from the cache or the service."""
    kind = ErrorKind.CONFIGURATION_RETRIEVAL
    default_code = "CONFIGURATION_RETRIEVAL_FAILED"


class InvoiceValidationFailure(EkuatiaError):
    """Invoice data was rejected locally or by the service."""
    kind = ErrorKind.INVOICE_VALIDATION
    default_code = "INVALID_DATOS_RECEPTOR"


class TransportFailure(EkuatiaError):
    """Network or service-level failure."""
    kind = ErrorKind.TRANSPORT
    default_code = "SYSTEM_ERROR"


class UserCancelled(EkuatiaError):
    """The taxpayer declined or did not answer a confirmation request."""
    kind = ErrorKind.USER_CANCELLED
    default_code = "USER_CANCELLED"


ERROR_CLASSES: Dict[ErrorKind, Type[EkuatiaError]] = {
    cls.kind: cls
    for cls in (
        AuthenticationFailure,
        ConfigurationFailure,
        ConfigurationRetrievalFailure,
        InvoiceValidationFailure,
        TransportFailure,
        UserCancelled,
    )
}

# Service error codes mapped to the kind that owns them
_CODE_KINDS: Dict[str, ErrorKind] = {
    code: kind for (kind, code) in RECOVERY_HINTS
}
_CODE_KINDS.update({
    "TEMPORARY_UNAVAILABLE": ErrorKind.TRANSPORT,
    "SYSTEM_ERROR": ErrorKind.TRANSPORT,
    "CONFIGURATION_RETRIEVAL_FAILED": ErrorKind.CONFIGURATION_RETRIEVAL,
    "INVALID_CONFIGURATION": ErrorKind.CONFIGURATION,
    "USER_CANCELLED": ErrorKind.USER_CANCELLED,
})


def is_retryable(error: BaseException) -> bool:
    """Return True only for retryable transport failures."""
    return (
        isinstance(error, EkuatiaError)
        and error.kind == ErrorKind.TRANSPORT
        and error.code in RETRYABLE_CODES
    )


def classify_exception(error: BaseException, **context: Any) -> EkuatiaError:
    """Wrap an unclassified exception into the taxonomy.

    Classified errors are returned unchanged. Timeouts become retryable
    ``TIMEOUT`` transport failures; anything else becomes ``SYSTEM_ERROR``.
    The original exception is kept as ``__cause__``.
    """
    if isinstance(error, EkuatiaError):
        return error

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        classified = TransportFailure(
            str(error) or "Tiempo de espera agotado", code="TIMEOUT", context=context
        )
    else:
        classified = TransportFailure(
            str(error) or error.__class__.__name__,
            code="SYSTEM_ERROR",
            context={**context, "error_type": error.__class__.__name__},
        )
    classified.__cause__ = error
    return classified


def from_error_response(
    payload: Mapping[str, Any], context: Optional[Dict[str, Any]] = None
) -> EkuatiaError:
    """Build a classified error from the service's standard error body.

    Args:
        payload: Either ``{"code", "message", "details"}`` or the API wrapper
                 ``{"success": False, "error": {...}}``.
        context: Extra context merged with the reported details.
    """
    body = payload.get("error", payload)
    code = body.get("code") or "SYSTEM_ERROR"
    message = body.get("message") or "Error inesperado del servicio"
    details = dict(body.get("details") or {})
    details.update(context or {})

    kind = _CODE_KINDS.get(code, ErrorKind.TRANSPORT)
    if kind == ErrorKind.TRANSPORT and code not in RETRYABLE_CODES:
        details.setdefault("service_code", code)
        code = "SYSTEM_ERROR"
    return ERROR_CLASSES[kind](message, code=code, context=details)
