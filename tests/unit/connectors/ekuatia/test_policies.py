"""Tests for document type selection."""

import pytest

from connectors.ekuatia.interfaces import DocumentType
from connectors.ekuatia.policies import (
    default_document_type_policy,
    history_document_type_policy,
    most_frequent_document_type,
)
from tests.fixtures.ekuatia_fakes import create_profile

FACTURA = DocumentType.FACTURA_ELECTRONICA
CREDITO = DocumentType.NOTA_CREDITO
DEBITO = DocumentType.NOTA_DEBITO


@pytest.mark.parametrize("history,expected", [
    ([], FACTURA),
    ([CREDITO], CREDITO),
    ([CREDITO, DEBITO, CREDITO], CREDITO),
    ([CREDITO, DEBITO], FACTURA),
    ([DEBITO, DEBITO, CREDITO, CREDITO, FACTURA], FACTURA),
])
def test_most_frequent_document_type(history, expected):
    assert most_frequent_document_type(history) == expected


def test_default_policy():
    assert default_document_type_policy(create_profile()) == FACTURA


def test_history_policy_ignores_profile():
    policy = history_document_type_policy([DEBITO])
    assert policy(create_profile()) == DEBITO
