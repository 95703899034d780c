"""Validation of issuer configurations and invoice requests.

Amounts are compared as :class:`~decimal.Decimal` built from their string
representation, so float inputs such as ``0.1 + 0.2`` reconcile the way a
person reading the invoice expects.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List

from .errors import ConfigurationFailure, InvoiceValidationFailure
from .interfaces import (
    SUPPORTED_DISPATCH_POINT,
    SUPPORTED_ESTABLISHMENT,
    InvoiceRequest,
    InvoiceSummary,
    IssuerConfiguration,
    ModalityType,
)

DATE_FORMAT = "%d/%m/%Y"
RUC_PATTERN = re.compile(r"^\d{1,8}$")


def to_decimal(value) -> Decimal:
    return Decimal(str(value))


def to_amount(value, field_name: str, context: Dict) -> Decimal:
    """Convert an amount, rejecting anything that is not a finite number.

    Raises:
        InvoiceValidationFailure: ``MONTO_NEGATIVO`` for NaN, infinities and
            values that cannot be parsed as a number.
    """
    try:
        amount = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        amount = None

    if amount is None or not amount.is_finite():
        raise InvoiceValidationFailure(
            "Montos deben ser números finitos",
            code="MONTO_NEGATIVO",
            context={**context, "field": field_name, "value": repr(value)},
        )
    return amount


def validate_issuer_configuration(config: IssuerConfiguration) -> None:
    """Check the hard constraints of an issuer configuration.

    Raises:
        ConfigurationFailure: If establishment or dispatch point is not 1,
            the stamp number or CSC is empty, or the advanced groups do not
            match the modality.
    """
    if (
        config.establecimiento != SUPPORTED_ESTABLISHMENT
        or config.punto_expedicion != SUPPORTED_DISPATCH_POINT
    ):
        raise ConfigurationFailure(
            "Solo se admite establecimiento 1 y punto de expedición 1",
            code="MULTIPLE_ESTABLISHMENTS",
            context={
                "establecimiento": config.establecimiento,
                "punto_expedicion": config.punto_expedicion,
            },
        )

    if not config.codigo_seguridad_contribuyente.strip():
        raise ConfigurationFailure(
            "Código de Seguridad del Contribuyente vacío",
            code="CSC_INVALID",
            context={"invalid_fields": ["codigo_seguridad_contribuyente"]},
        )

    if not config.numero_timbrado.strip():
        raise ConfigurationFailure(
            "Número de timbrado vacío",
            context={"invalid_fields": ["numero_timbrado"]},
        )

    groups = config.grupos_utilizables
    if groups is not None:
        if config.modality != ModalityType.AVANZADA:
            raise ConfigurationFailure(
                "Los grupos utilizables requieren modalidad AVANZADA",
                context={"invalid_fields": ["grupos_utilizables"]},
            )
        if groups.sector_supermercados:
            raise ConfigurationFailure(
                "El grupo sector supermercados no está disponible",
                context={"invalid_fields": ["grupos_utilizables.sector_supermercados"]},
            )


def reconcile_summary(request: InvoiceRequest) -> InvoiceSummary:
    """Compute the summary from the line items.

    Also checks that every item is positive and that each line total matches
    ``cantidad * precio_unitario + monto_iva``.

    Raises:
        InvoiceValidationFailure: ``MONTO_NEGATIVO`` or ``RESUMEN_INCONSISTENTE``.
    """
    if not request.items:
        raise InvoiceValidationFailure(
            "La factura debe tener al menos un ítem",
            code="RESUMEN_INCONSISTENTE",
            context={"validation_errors": {"items": ["vacío"]}},
        )

    subtotal = Decimal(0)
    total_iva = Decimal(0)
    errors: Dict[str, List[str]] = {}

    for index, item in enumerate(request.items):
        item_context = {"item": index, "codigo_producto": item.codigo_producto}
        cantidad = to_amount(item.cantidad, "cantidad", item_context)
        precio = to_amount(item.precio_unitario, "precio_unitario", item_context)
        iva = to_amount(item.monto_iva, "monto_iva", item_context)
        total = to_amount(item.monto_total, "monto_total", item_context)

        if cantidad <= 0 or precio <= 0 or iva < 0 or total <= 0:
            raise InvoiceValidationFailure(
                "Montos deben ser positivos",
                code="MONTO_NEGATIVO",
                context=item_context,
            )

        expected = cantidad * precio + iva
        if expected != total:
            errors[f"items[{index}].monto_total"] = [
                f"esperado {expected}, recibido {total}"
            ]

        subtotal += cantidad * precio
        total_iva += iva

    if errors:
        raise InvoiceValidationFailure(
            "El total de los ítems no coincide con cantidad, precio e IVA",
            code="RESUMEN_INCONSISTENTE",
            context={"validation_errors": errors},
        )

    return InvoiceSummary(
        subtotal=float(subtotal),
        total_iva=float(total_iva),
        total_general=float(subtotal + total_iva),
    )


def validate_invoice_request(request: InvoiceRequest) -> InvoiceSummary:
    """Validate an invoice request before it is shown for confirmation.

    Returns:
        The summary recomputed from the line items, to be used in the
        confirmation proposal instead of the caller-supplied totals.

    Raises:
        InvoiceValidationFailure: On any inconsistency. No remote call is
            made for a request that fails here.
    """
    for name, value in (
        ("establecimiento", request.establecimiento),
        ("punto_expedicion", request.punto_expedicion),
    ):
        if value is not None and value != 1:
            raise InvoiceValidationFailure(
                "Solo se admite establecimiento 1 y punto de expedición 1",
                code="ESTABLECIMIENTO_INVALIDO",
                context={name: value},
            )

    receptor_ruc = (request.receptor_ruc or "").strip()
    if not RUC_PATTERN.match(receptor_ruc) or not (request.receptor_nombre or "").strip():
        raise InvoiceValidationFailure(
            "Datos del receptor inválidos o incompletos",
            code="INVALID_DATOS_RECEPTOR",
            context={"receptor_ruc": request.receptor_ruc},
        )

    try:
        datetime.strptime(request.fecha, DATE_FORMAT)
    except (TypeError, ValueError):
        raise InvoiceValidationFailure(
            "Fecha de emisión inválida",
            code="FECHA_INVALIDA",
            context={"fecha": request.fecha},
        ) from None

    computed = reconcile_summary(request)
    declared = {
        name: to_amount(getattr(request.resumen, name), name, {"resumen": name})
        for name in ("subtotal", "total_iva", "total_general")
    }

    mismatches = {
        name: [f"esperado {to_decimal(getattr(computed, name))}, recibido {declared[name]}"]
        for name in ("subtotal", "total_iva", "total_general")
        if to_decimal(getattr(computed, name)) != declared[name]
    }
    if declared["subtotal"] + declared["total_iva"] != declared["total_general"]:
        mismatches.setdefault("total_general", []).append(
            "subtotal + total_iva no coincide con total_general"
        )

    if mismatches:
        raise InvoiceValidationFailure(
            "El resumen no coincide con los ítems",
            code="RESUMEN_INCONSISTENTE",
            context={"validation_errors": mismatches},
        )

    return computed
