"""Interfaces for the Ekuatia invoice agent.

This module defines the core interfaces and data structures used by the agent.
It provides type safety through dataclasses and enums, ensuring consistent data
handling between the session manager, the configuration cache and the
orchestrator.

Ekuatia is the electronic invoicing system of Paraguay's tax authority (DNIT).
Taxpayers authenticate with the credentials of the Marangatu tax management
system and issue documents under a one-time issuer configuration.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")

# Emission mode accepted for direct taxpayer access
EMISSION_MODE = "SOLUCIÓN GRATUITA"

# Only a single establishment and dispatch point are supported
SUPPORTED_ESTABLISHMENT = 1
SUPPORTED_DISPATCH_POINT = 1


class DocumentType(Enum):
    """Document types supported by Ekuatia."""
    FACTURA_ELECTRONICA = "FACTURA ELECTRONICA"
    NOTA_CREDITO = "NOTA_CREDITO"
    NOTA_DEBITO = "NOTA_DEBITO"


class TaxpayerType(Enum):
    """Taxpayer classification from the RUC registry."""
    FISICO = "FISICO"  # Individual person
    JURIDICO = "JURIDICO"  # Legal entity


class ModalityType(Enum):
    """Configuration modality.

    BASICA covers simple invoicing; AVANZADA enables the optional groups such
    as public procurement (DNCP) information.
    """
    BASICA = "BASICA"
    AVANZADA = "AVANZADA"


class RucStatus(Enum):
    """RUC status values reported by Marangatu."""
    ACTIVO = "Activo"
    INACTIVO = "Inactivo"
    SUSPENDIDO = "Suspendido"


class CacheInvalidationTrigger(Enum):
    """Events that evict a cached issuer configuration."""
    RUC_STATUS_CHANGE = "ruc_status_change"
    ESTABLISHMENT_UPDATE = "establishment_update"
    CSC_UPDATE = "csc_update"
    TIMBRADO_EXPIRATION = "timbrado_expiration"
    CONFIGURATION_NOTIFICATION = "configuration_notification"


class ConfirmationKind(Enum):
    """Kinds of state-changing actions that require human approval."""
    CONFIGURATION = "configuration"
    INVOICE = "invoice"


@dataclass(frozen=True)
class Credentials:
    """Credentials for Ekuatia authentication.

    Attributes:
        username: RUC without verification digit (``5452``, not ``5452-1``).
        password: Confidential access key from Marangatu.
        emission_mode: Always ``SOLUCIÓN GRATUITA`` for direct access.
    """
    username: str
    password: str = field(repr=False)
    emission_mode: str = EMISSION_MODE


@dataclass
class Session:
    """Authenticated session with the Ekuatia service.

    Sessions are never persisted; they live until invalidated or until the
    process ends.
    """
    token: str = field(repr=False)
    taxpayer_id: str
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class Profile:
    """Taxpayer profile retrieved from Marangatu after login."""
    ruc_with_dv: str
    business_name: str
    ruc_status: RucStatus
    numero_timbrado: str
    actividad_economica: str
    fecha_aprobacion: str
    tipo_contribuyente: TaxpayerType
    csc: str = field(repr=False)

    @property
    def is_active(self) -> bool:
        return self.ruc_status == RucStatus.ACTIVO


@dataclass(frozen=True)
class EstablishmentData:
    """Legal address of the taxpayer's establishment."""
    department: str
    district: str
    city: str
    address: str


@dataclass(frozen=True)
class LoginResult:
    """Successful login response from the remote service."""
    session_token: str = field(repr=False)
    profile: Profile
    establishment: Optional[EstablishmentData] = None


@dataclass(frozen=True)
class AdvancedGroups:
    """Optional groups available under the AVANZADA modality.

    Attributes:
        informaciones_compras_publicas: DNCP public procurement information.
        sector_supermercados: Supermarket sector group (not supported).
    """
    informaciones_compras_publicas: bool = False
    sector_supermercados: bool = False


@dataclass(frozen=True)
class IssuerConfiguration:
    """One-time issuer setup record for a taxpayer.

    ``establecimiento`` and ``punto_expedicion`` must always be 1. Violations
    are reported by :func:`validation.validate_issuer_configuration` and are
    never corrected silently.
    """
    numero_timbrado: str
    tipo_documento: DocumentType
    actividad_economica: str
    fecha_inicio_vigencia: str
    tipo_contribuyente: TaxpayerType
    codigo_seguridad_contribuyente: str = field(repr=False)
    establecimiento: int = SUPPORTED_ESTABLISHMENT
    punto_expedicion: int = SUPPORTED_DISPATCH_POINT
    modality: ModalityType = ModalityType.BASICA
    logo: Optional[str] = None
    grupos_utilizables: Optional[AdvancedGroups] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        data = asdict(self)
        data["tipo_documento"] = self.tipo_documento.value
        data["tipo_contribuyente"] = self.tipo_contribuyente.value
        data["modality"] = self.modality.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IssuerConfiguration":
        """Rebuild a configuration from :meth:`to_dict` output."""
        groups = data.get("grupos_utilizables")
        return cls(
            numero_timbrado=data["numero_timbrado"],
            tipo_documento=DocumentType(data["tipo_documento"]),
            actividad_economica=data["actividad_economica"],
            fecha_inicio_vigencia=data["fecha_inicio_vigencia"],
            tipo_contribuyente=TaxpayerType(data["tipo_contribuyente"]),
            codigo_seguridad_contribuyente=data["codigo_seguridad_contribuyente"],
            establecimiento=data.get("establecimiento", SUPPORTED_ESTABLISHMENT),
            punto_expedicion=data.get("punto_expedicion", SUPPORTED_DISPATCH_POINT),
            modality=ModalityType(data.get("modality", ModalityType.BASICA.value)),
            logo=data.get("logo"),
            grupos_utilizables=AdvancedGroups(**groups) if groups else None,
        )


@dataclass
class CacheEntry(Generic[T]):
    """Cached value with its storage time, TTL and invalidation triggers.

    An entry is logically absent once ``now > stored_at + ttl``, whether or
    not it has been physically deleted.
    """
    value: T
    stored_at: datetime
    ttl: timedelta
    invalidation_triggers: List[str] = field(
        default_factory=lambda: [t.value for t in CacheInvalidationTrigger]
    )

    @property
    def expires_at(self) -> datetime:
        return self.stored_at + self.ttl

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now()) > self.expires_at


@dataclass(frozen=True)
class InvoiceItem:
    """Line item of an electronic invoice.

    ``monto_total`` must equal ``cantidad * precio_unitario + monto_iva``.
    """
    codigo_producto: str
    descripcion: str
    cantidad: float
    precio_unitario: float
    monto_iva: float
    monto_total: float


@dataclass(frozen=True)
class InvoiceSummary:
    """Financial summary of an invoice."""
    subtotal: float
    total_iva: float
    total_general: float


@dataclass(frozen=True)
class InvoiceRequest:
    """Invoice data supplied by the caller for a single issuance."""
    fecha: str
    receptor_ruc: str
    receptor_nombre: str
    items: List[InvoiceItem]
    resumen: InvoiceSummary
    receptor_direccion: Optional[str] = None
    tipo_documento: Optional[DocumentType] = None
    establecimiento: Optional[int] = None
    punto_expedicion: Optional[int] = None
    observaciones: Optional[str] = None


@dataclass(frozen=True)
class InvoiceResult:
    """Legally binding result of a successful issuance.

    Attributes:
        document_id: Identifier assigned by the service.
        cdc: Control code (Código de Control) of the document.
        issued_at: Issuance timestamp reported by the service.
    """
    document_id: str
    cdc: str
    issued_at: datetime


@dataclass(frozen=True)
class ConfigurationProposal:
    """Configuration proposed to the taxpayer before it is persisted."""
    taxpayer_id: str
    business_name: str
    configuration: IssuerConfiguration


@dataclass(frozen=True)
class InvoiceProposal:
    """Invoice presented for approval, carrying the reconciled totals."""
    taxpayer_id: str
    numero_timbrado: str
    tipo_documento: DocumentType
    fecha: str
    receptor_ruc: str
    receptor_nombre: str
    items: List[InvoiceItem]
    resumen: InvoiceSummary


class IRemoteInvoicingService(ABC):
    """Remote Ekuatia service consumed by the agent.

    Implementations own the transport. Every method may raise a classified
    :class:`errors.EkuatiaError`; anything else is classified by the caller.
    """

    @abstractmethod
    async def login(self, credentials: Credentials) -> LoginResult:
        """Authenticate and return the session token with the taxpayer profile."""
        pass

    @abstractmethod
    async def fetch_current_configuration(
        self, taxpayer_id: str, session_token: str
    ) -> Optional[IssuerConfiguration]:
        """Return the authoritative issuer configuration, or None if unset."""
        pass

    @abstractmethod
    async def save_configuration(
        self, taxpayer_id: str, session_token: str, config: IssuerConfiguration
    ) -> str:
        """Persist a configuration and return its identifier."""
        pass

    @abstractmethod
    async def submit_invoice(
        self, session_token: str, payload: Dict[str, Any]
    ) -> InvoiceResult:
        """Submit an invoice for issuance."""
        pass


class IConfirmationChannel(ABC):
    """Human approval channel (terminal prompt, UI dialog, approval queue).

    The channel owns any timeout policy; the agent waits indefinitely.
    """

    @abstractmethod
    async def request_confirmation(
        self,
        kind: ConfirmationKind,
        proposal: Any,
        context: Dict[str, Any],
    ) -> bool:
        """Ask for approval of ``proposal``.

        Returns:
            True only if the action was explicitly approved.
        """
        pass


class IPersistentStore(ABC):
    """Durable key/value storage for configuration cache entries."""

    @abstractmethod
    async def load(self, key: str) -> Optional[CacheEntry[IssuerConfiguration]]:
        """Load an entry, or None if absent or unreadable."""
        pass

    @abstractmethod
    async def save(self, key: str, entry: CacheEntry[IssuerConfiguration]) -> bool:
        """Save an entry, overwriting any prior one."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete an entry. Returns False if nothing was stored."""
        pass
