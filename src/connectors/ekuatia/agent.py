"""Ekuatia invoice agent.

This module provides the orchestrator that issues electronic invoices on
behalf of a taxpayer. It composes the session manager, the configuration
cache and the confirmation gate into two workflows:

Configure-if-needed:
    Start -> CheckCache -> [Authenticate -> FetchProfile -> BuildProposal
    -> Confirm -> Persist -> CacheWrite] -> Ready

Issue-invoice (repeatable):
    Validate -> Configure-if-needed -> Confirm -> Submit (with retry) -> Done

Every failure leaves the agent as a classified error. Before re-raising, the
agent applies the side effect the error calls for: authentication failures
drop the session, configuration failures evict the cached configuration.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Union

from config.logger import configure_logging, logger
from config.settings import Settings
from .cache import ConfigurationCache, EncryptedFileStore
from .confirmation import ConfirmationGate
from .errors import (
    AuthenticationFailure,
    EkuatiaError,
    ErrorKind,
    classify_exception,
)
from .interfaces import (
    AdvancedGroups,
    CacheInvalidationTrigger,
    ConfigurationProposal,
    ConfirmationKind,
    Credentials,
    IConfirmationChannel,
    InvoiceProposal,
    InvoiceRequest,
    InvoiceResult,
    InvoiceSummary,
    IRemoteInvoicingService,
    IssuerConfiguration,
    ModalityType,
    Profile,
)
from .policies import DocumentTypePolicy, default_document_type_policy
from .retry import RetryPolicy, retry_async
from .session import SessionManager
from .validation import validate_invoice_request, validate_issuer_configuration

# Cache trigger recorded when a configuration error evicts the cached copy
_CONFIGURATION_ERROR_TRIGGERS = {
    "MULTIPLE_ESTABLISHMENTS": CacheInvalidationTrigger.ESTABLISHMENT_UPDATE,
    "CSC_INVALID": CacheInvalidationTrigger.CSC_UPDATE,
}


def build_invoice_payload(
    taxpayer_id: str,
    request: InvoiceRequest,
    config: IssuerConfiguration,
    summary: InvoiceSummary,
) -> Dict[str, Any]:
    """Build the submission payload from a validated request.

    Issuer fields always come from the verified configuration and the
    summary is the one recomputed from the line items.
    """
    tipo_documento = request.tipo_documento or config.tipo_documento
    return {
        "ruc_emisor": taxpayer_id,
        "numero_timbrado": config.numero_timbrado,
        "establecimiento": config.establecimiento,
        "punto_expedicion": config.punto_expedicion,
        "tipo_documento": tipo_documento.value,
        "fecha": request.fecha,
        "receptor": {
            "ruc": request.receptor_ruc,
            "nombre": request.receptor_nombre,
            "direccion": request.receptor_direccion,
        },
        "items": [asdict(item) for item in request.items],
        "resumen": asdict(summary),
        "observaciones": request.observaciones,
    }


class EkuatiaInvoiceAgent:
    """Orchestrator for configuring and issuing Ekuatia invoices.

    One agent can serve several taxpayers at once: sessions are kept per
    taxpayer and the check-cache-then-configure sequence runs under a
    per-taxpayer lock, so two concurrent calls for the same RUC never both
    log in or write conflicting cache entries.

    Attributes:
        remote: Remote Ekuatia service.
        gate: Confirmation gate wrapping the human approval channel.
        cache: Persistent configuration cache.
        retry_policy: Backoff policy for invoice submission.
    """

    def __init__(
        self,
        remote: IRemoteInvoicingService,
        confirmation_channel: IConfirmationChannel,
        cache: Optional[ConfigurationCache] = None,
        retry_policy: Optional[RetryPolicy] = None,
        document_type_policy: DocumentTypePolicy = default_document_type_policy,
        modality: ModalityType = ModalityType.BASICA,
        advanced_groups: Optional[AdvancedGroups] = None,
        logo: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the agent.

        Args:
            remote: Remote service implementation.
            confirmation_channel: Channel used to obtain human approval.
            cache: Configuration cache. If not provided, uses an encrypted
                   file store in /tmp/ekuatia_cache.
            retry_policy: Submission retry policy (3 attempts, 1s then 2s).
            document_type_policy: Chooses the document type of a new
                                  configuration from the profile.
            modality: Modality for new configurations.
            advanced_groups: Optional groups for the AVANZADA modality.
            logo: Optional logo for new configurations.
            sleep: Awaitable used for backoff delays.
        """
        self.remote = remote
        self.gate = ConfirmationGate(confirmation_channel)
        self.cache = cache or ConfigurationCache(EncryptedFileStore(Settings().cache_path))
        self.retry_policy = retry_policy or RetryPolicy()
        self.document_type_policy = document_type_policy
        self.modality = modality
        self.advanced_groups = advanced_groups
        self.logo = logo
        self._sleep = sleep

        self._sessions: Dict[str, SessionManager] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_holders: Dict[str, int] = {}

        self.logger = logger.bind(component="invoice_agent")

    def session_for(self, taxpayer_id: str) -> SessionManager:
        """Return the session manager of a taxpayer, creating it if needed."""
        if taxpayer_id not in self._sessions:
            self._sessions[taxpayer_id] = SessionManager(self.remote)
        return self._sessions[taxpayer_id]

    @asynccontextmanager
    async def _taxpayer_lock(self, taxpayer_id: str) -> AsyncIterator[None]:
        """Serialize workflows of one taxpayer.

        The lock is dropped once no workflow holds or awaits it.
        """
        lock = self._locks.setdefault(taxpayer_id, asyncio.Lock())
        self._lock_holders[taxpayer_id] = self._lock_holders.get(taxpayer_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[taxpayer_id] -= 1
            if not self._lock_holders[taxpayer_id]:
                del self._lock_holders[taxpayer_id]
                del self._locks[taxpayer_id]

    async def issue_invoice(
        self,
        taxpayer_id: str,
        credentials: Credentials,
        request: InvoiceRequest,
    ) -> InvoiceResult:
        """Issue an invoice after configuring and confirming.

        The request is validated before anything else, so an inconsistent
        request never reaches the service. The configuration is then ensured
        on every call, even if an earlier call already configured, because
        the authoritative copy may have changed in between.

        Args:
            taxpayer_id: Issuer RUC without verification digit.
            credentials: Marangatu credentials of the issuer.
            request: Invoice to issue.

        Returns:
            The result returned by the service, unchanged.

        Raises:
            EkuatiaError: Any classified failure. ``UserCancelled`` if the
                configuration or the invoice was not approved.
        """
        log = self.logger.bind(taxpayer_id=taxpayer_id)

        try:
            summary = validate_invoice_request(request)
        except EkuatiaError as e:
            log.warning("invoice_rejected_locally", code=e.code, context=e.context)
            raise

        config = await self.ensure_configured(taxpayer_id, credentials)

        try:
            tipo_documento = request.tipo_documento or config.tipo_documento
            proposal = InvoiceProposal(
                taxpayer_id=taxpayer_id,
                numero_timbrado=config.numero_timbrado,
                tipo_documento=tipo_documento,
                fecha=request.fecha,
                receptor_ruc=request.receptor_ruc,
                receptor_nombre=request.receptor_nombre,
                items=list(request.items),
                resumen=summary,
            )
            await self.gate.require(
                ConfirmationKind.INVOICE,
                proposal,
                {"taxpayer_id": taxpayer_id, "total_general": summary.total_general},
            )

            # The session may have been dropped while waiting for approval
            session = await self.session_for(taxpayer_id).ensure_authenticated(credentials)
            payload = build_invoice_payload(taxpayer_id, request, config, summary)

            result = await retry_async(
                self.remote.submit_invoice,
                session.token,
                payload,
                policy=self.retry_policy,
                sleep=self._sleep,
                operation="submit_invoice",
            )
        except EkuatiaError as e:
            await self._handle_failure(taxpayer_id, e)
            raise
        except asyncio.CancelledError:
            log.info("invoice_issue_cancelled")
            raise
        except Exception as e:
            error = classify_exception(e, ruc=taxpayer_id, operation="issue_invoice")
            await self._handle_failure(taxpayer_id, error)
            raise error from e

        log.info(
            "invoice_issued",
            document_id=result.document_id,
            cdc=result.cdc,
            issued_at=result.issued_at.isoformat(),
        )
        return result

    async def ensure_configured(
        self, taxpayer_id: str, credentials: Credentials
    ) -> IssuerConfiguration:
        """Return a verified issuer configuration, creating one if needed.

        Raises:
            UserCancelled: If the proposed configuration was not approved.
            EkuatiaError: Any other classified failure.
        """
        if credentials.username.strip() != taxpayer_id:
            raise AuthenticationFailure(
                "Las credenciales no corresponden al RUC indicado",
                code="INVALID_CREDENTIALS",
                context={"ruc": taxpayer_id},
            )

        async with self._taxpayer_lock(taxpayer_id):
            try:
                return await self._configure_if_needed(taxpayer_id, credentials)
            except EkuatiaError as e:
                await self._handle_failure(taxpayer_id, e)
                raise
            except asyncio.CancelledError:
                self.logger.info("configuration_cancelled", taxpayer_id=taxpayer_id)
                raise
            except Exception as e:
                error = classify_exception(e, ruc=taxpayer_id, operation="configure")
                await self._handle_failure(taxpayer_id, error)
                raise error from e

    async def _configure_if_needed(
        self, taxpayer_id: str, credentials: Credentials
    ) -> IssuerConfiguration:
        manager = self.session_for(taxpayer_id)

        async def authoritative_source(ruc: str) -> Optional[IssuerConfiguration]:
            session = await manager.ensure_authenticated(credentials)
            return await self.remote.fetch_current_configuration(ruc, session.token)

        config = await self.cache.get(taxpayer_id, authoritative_source)
        if config is not None:
            manager.session_cache.modality = config.modality
            return config

        session = await manager.ensure_authenticated(credentials)
        profile = manager.session_cache.profile
        if profile is None:
            raise AuthenticationFailure(
                "La sesión no contiene el perfil del contribuyente",
                code="SESSION_REJECTED",
                context={"ruc": taxpayer_id},
            )

        proposed = self._build_configuration(profile)
        validate_issuer_configuration(proposed)

        await self.gate.require(
            ConfirmationKind.CONFIGURATION,
            ConfigurationProposal(
                taxpayer_id=taxpayer_id,
                business_name=profile.business_name,
                configuration=proposed,
            ),
            {"taxpayer_id": taxpayer_id, "modality": proposed.modality.value},
        )

        config_id = await self.remote.save_configuration(taxpayer_id, session.token, proposed)
        await self.cache.set(taxpayer_id, proposed)
        manager.session_cache.modality = proposed.modality

        self.logger.info(
            "configuration_established",
            taxpayer_id=taxpayer_id,
            config_id=config_id,
            tipo_documento=proposed.tipo_documento.value,
            modality=proposed.modality.value,
        )
        return proposed

    def _build_configuration(self, profile: Profile) -> IssuerConfiguration:
        """Derive a configuration proposal from the taxpayer profile."""
        return IssuerConfiguration(
            numero_timbrado=profile.numero_timbrado,
            tipo_documento=self.document_type_policy(profile),
            actividad_economica=profile.actividad_economica,
            fecha_inicio_vigencia=profile.fecha_aprobacion,
            tipo_contribuyente=profile.tipo_contribuyente,
            codigo_seguridad_contribuyente=profile.csc,
            modality=self.modality,
            logo=self.logo,
            grupos_utilizables=self.advanced_groups,
        )

    async def invalidate_configuration(
        self,
        taxpayer_id: str,
        trigger: Union[CacheInvalidationTrigger, str],
    ) -> bool:
        """Evict the cached configuration of a taxpayer.

        Calling it again when nothing is cached is a no-op.

        Returns:
            True if a cached configuration was removed.
        """
        return await self.cache.invalidate(taxpayer_id, trigger)

    async def logout(self, taxpayer_id: str) -> None:
        """End the session of a taxpayer and clear its session-scoped cache.

        The session manager is forgotten, so the next workflow of this
        taxpayer logs in again with a fresh one.
        """
        manager = self._sessions.pop(taxpayer_id, None)
        if manager is not None:
            await manager.logout()

    async def _handle_failure(self, taxpayer_id: str, error: EkuatiaError) -> None:
        """Apply the side effects of a failure before it is re-raised."""
        self.logger.warning(
            "workflow_failed",
            taxpayer_id=taxpayer_id,
            kind=error.kind.value,
            code=error.code,
            retryable=error.retryable,
        )

        if error.kind == ErrorKind.AUTHENTICATION:
            self.session_for(taxpayer_id).invalidate(reason=error.code.lower())

        elif error.kind == ErrorKind.CONFIGURATION:
            trigger = _CONFIGURATION_ERROR_TRIGGERS.get(
                error.code, CacheInvalidationTrigger.CONFIGURATION_NOTIFICATION
            )
            await self.cache.invalidate(taxpayer_id, trigger)

        elif error.kind == ErrorKind.INVOICE_VALIDATION and error.code == "TIMBRADO_EXPIRED":
            await self.cache.invalidate(
                taxpayer_id, CacheInvalidationTrigger.TIMBRADO_EXPIRATION
            )


def build_agent(
    remote: IRemoteInvoicingService,
    confirmation_channel: IConfirmationChannel,
    settings: Optional[Settings] = None,
    **kwargs: Any,
) -> EkuatiaInvoiceAgent:
    """Wire an agent from settings.

    Configures logging, the encrypted configuration cache and the retry
    policy. Extra keyword arguments are passed to the agent.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)

    cache = ConfigurationCache(
        EncryptedFileStore(settings.cache_path, settings.cache_key),
        ttl=settings.cache_ttl,
    )
    retry_policy = RetryPolicy(
        max_attempts=settings.retry_attempts,
        initial_delay=settings.retry_initial_delay,
        multiplier=settings.retry_multiplier,
    )
    return EkuatiaInvoiceAgent(
        remote,
        confirmation_channel,
        cache=cache,
        retry_policy=retry_policy,
        **kwargs,
    )
