"""Tests for invoice and configuration validation."""

import pytest

from connectors.ekuatia.errors import ConfigurationFailure, InvoiceValidationFailure
from connectors.ekuatia.interfaces import AdvancedGroups, InvoiceSummary, ModalityType
from connectors.ekuatia.validation import (
    reconcile_summary,
    validate_invoice_request,
    validate_issuer_configuration,
)
from tests.fixtures.ekuatia_fakes import (
    create_configuration,
    create_invoice_item,
    create_invoice_request,
)


class TestInvoiceValidation:
    """Tests for validate_invoice_request."""

    def test_valid_request_returns_reconciled_summary(self):
        summary = validate_invoice_request(create_invoice_request())
        assert summary == InvoiceSummary(subtotal=500000, total_iva=0, total_general=500000)

    def test_multiple_items_with_tax(self):
        request = create_invoice_request(
            items=[
                create_invoice_item(cantidad=2, precio_unitario=100000, monto_iva=20000, monto_total=220000),
                create_invoice_item(
                    codigo_producto="PROD002", cantidad=1, precio_unitario=50000, monto_iva=5000, monto_total=55000
                ),
            ],
            resumen=InvoiceSummary(subtotal=250000, total_iva=25000, total_general=275000),
        )

        summary = validate_invoice_request(request)

        assert summary.subtotal == 250000
        assert summary.total_iva == 25000
        assert summary.total_general == 275000

    def test_decimal_amounts_reconcile(self):
        request = create_invoice_request(
            items=[create_invoice_item(cantidad=3, precio_unitario=0.1, monto_iva=0.2, monto_total=0.5)],
            resumen=InvoiceSummary(subtotal=0.3, total_iva=0.2, total_general=0.5),
        )
        assert validate_invoice_request(request).total_general == 0.5

    def test_summary_mismatch_is_rejected(self):
        request = create_invoice_request(
            resumen=InvoiceSummary(subtotal=500000, total_iva=0, total_general=450000)
        )

        with pytest.raises(InvoiceValidationFailure) as exc_info:
            validate_invoice_request(request)

        assert exc_info.value.code == "RESUMEN_INCONSISTENTE"
        assert "total_general" in exc_info.value.context["validation_errors"]

    def test_line_total_mismatch_is_rejected(self):
        request = create_invoice_request(items=[create_invoice_item(monto_total=400000)])

        with pytest.raises(InvoiceValidationFailure) as exc_info:
            validate_invoice_request(request)

        assert exc_info.value.code == "RESUMEN_INCONSISTENTE"
        assert "items[0].monto_total" in exc_info.value.context["validation_errors"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"cantidad": 0, "monto_total": 0},
            {"precio_unitario": -500000, "monto_total": -500000},
            {"monto_iva": -1, "monto_total": 499999},
            {"cantidad": float("nan")},
            {"precio_unitario": float("inf"), "monto_total": float("inf")},
            {"monto_iva": float("-inf")},
            {"precio_unitario": None},
            {"monto_total": "quinientos mil"},
        ],
    )
    def test_non_positive_amounts_are_rejected(self, overrides):
        request = create_invoice_request(items=[create_invoice_item(**overrides)])

        with pytest.raises(InvoiceValidationFailure) as exc_info:
            validate_invoice_request(request)

        assert exc_info.value.code == "MONTO_NEGATIVO"

    @pytest.mark.parametrize("field", ["subtotal", "total_iva", "total_general"])
    @pytest.mark.parametrize("value", [float("nan"), float("inf"), None])
    def test_non_finite_summary_is_rejected(self, field, value):
        totals = {"subtotal": 500000, "total_iva": 0, "total_general": 500000}
        totals[field] = value
        request = create_invoice_request(resumen=InvoiceSummary(**totals))

        with pytest.raises(InvoiceValidationFailure) as exc_info:
            validate_invoice_request(request)

        assert exc_info.value.code == "MONTO_NEGATIVO"
        assert exc_info.value.context["field"] == field

    def test_empty_items_are_rejected(self):
        request = create_invoice_request(
            items=[], resumen=InvoiceSummary(subtotal=0, total_iva=0, total_general=0)
        )
        with pytest.raises(InvoiceValidationFailure):
            validate_invoice_request(request)

    @pytest.mark.parametrize(
        "overrides",
        [{"establecimiento": 2}, {"punto_expedicion": 3}, {"establecimiento": 1, "punto_expedicion": 2}],
    )
    def test_establishment_and_dispatch_point_must_be_one(self, overrides):
        with pytest.raises(InvoiceValidationFailure) as exc_info:
            validate_invoice_request(create_invoice_request(**overrides))

        assert exc_info.value.code == "ESTABLECIMIENTO_INVALIDO"

    def test_explicit_establishment_one_is_accepted(self):
        validate_invoice_request(create_invoice_request(establecimiento=1, punto_expedicion=1))

    @pytest.mark.parametrize(
        "overrides",
        [{"receptor_ruc": ""}, {"receptor_ruc": "1234567-8"}, {"receptor_nombre": "  "}],
    )
    def test_invalid_recipient_is_rejected(self, overrides):
        with pytest.raises(InvoiceValidationFailure) as exc_info:
            validate_invoice_request(create_invoice_request(**overrides))

        assert exc_info.value.code == "INVALID_DATOS_RECEPTOR"

    @pytest.mark.parametrize("fecha", ["2026-01-25", "32/01/2026", ""])
    def test_invalid_date_is_rejected(self, fecha):
        with pytest.raises(InvoiceValidationFailure) as exc_info:
            validate_invoice_request(create_invoice_request(fecha=fecha))

        assert exc_info.value.code == "FECHA_INVALIDA"

    def test_reconcile_summary_ignores_declared_totals(self):
        request = create_invoice_request(
            resumen=InvoiceSummary(subtotal=1, total_iva=1, total_general=2)
        )
        assert reconcile_summary(request).total_general == 500000


class TestIssuerConfigurationValidation:
    """Tests for validate_issuer_configuration."""

    def test_valid_configuration(self):
        validate_issuer_configuration(create_configuration())

    @pytest.mark.parametrize(
        "overrides", [{"establecimiento": 2}, {"punto_expedicion": 2}]
    )
    def test_single_establishment_constraint(self, overrides):
        with pytest.raises(ConfigurationFailure) as exc_info:
            validate_issuer_configuration(create_configuration(**overrides))

        assert exc_info.value.code == "MULTIPLE_ESTABLISHMENTS"

    def test_empty_csc_is_rejected(self):
        with pytest.raises(ConfigurationFailure) as exc_info:
            validate_issuer_configuration(create_configuration(codigo_seguridad_contribuyente=""))

        assert exc_info.value.code == "CSC_INVALID"

    def test_empty_timbrado_is_rejected(self):
        with pytest.raises(ConfigurationFailure):
            validate_issuer_configuration(create_configuration(numero_timbrado=" "))

    def test_advanced_groups_require_avanzada(self):
        config = create_configuration(
            grupos_utilizables=AdvancedGroups(informaciones_compras_publicas=True)
        )
        with pytest.raises(ConfigurationFailure):
            validate_issuer_configuration(config)

    def test_avanzada_with_public_procurement(self):
        config = create_configuration(
            modality=ModalityType.AVANZADA,
            grupos_utilizables=AdvancedGroups(informaciones_compras_publicas=True),
        )
        validate_issuer_configuration(config)

    def test_supermarket_sector_is_not_supported(self):
        config = create_configuration(
            modality=ModalityType.AVANZADA,
            grupos_utilizables=AdvancedGroups(sector_supermercados=True),
        )
        with pytest.raises(ConfigurationFailure):
            validate_issuer_configuration(config)
