"""Ekuatia Invoice Agent Package.

This package implements the agent that issues electronic invoices through
Ekuatia, the electronic invoicing system of Paraguay's tax authority (DNIT).

The agent provides:
- Authentication with Marangatu credentials and session lifecycle management
- One-time issuer configuration, cached for 90 days and reconciled on every use
- Mandatory human confirmation before configuring or issuing
- Invoice validation and submission with retry on transient failures
"""

# Orchestrator
from .agent import EkuatiaInvoiceAgent, build_agent

# Error taxonomy
from .errors import (
    AuthenticationFailure,
    ConfigurationFailure,
    ConfigurationRetrievalFailure,
    EkuatiaError,
    ErrorKind,
    InvoiceValidationFailure,
    TransportFailure,
    UserCancelled,
)

# Interface definitions for type safety and testing
from .interfaces import (
    CacheInvalidationTrigger,
    Credentials,
    IConfirmationChannel,
    InvoiceItem,
    InvoiceRequest,
    InvoiceResult,
    InvoiceSummary,
    IPersistentStore,
    IRemoteInvoicingService,
    IssuerConfiguration,
)

# Public API exports
__all__ = [
    "EkuatiaInvoiceAgent",
    "build_agent",
    "AuthenticationFailure",
    "ConfigurationFailure",
    "ConfigurationRetrievalFailure",
    "EkuatiaError",
    "ErrorKind",
    "InvoiceValidationFailure",
    "TransportFailure",
    "UserCancelled",
    "CacheInvalidationTrigger",
    "Credentials",
    "IConfirmationChannel",
    "InvoiceItem",
    "InvoiceRequest",
    "InvoiceResult",
    "InvoiceSummary",
    "IPersistentStore",
    "IRemoteInvoicingService",
    "IssuerConfiguration",
]
