"""Document type selection for new issuer configurations.

The configuration records the document type the taxpayer issues most. The
rule is a policy, not a fixed function: the agent accepts any callable that
maps a profile to a document type.
"""

from collections import Counter
from typing import Callable, Iterable, Sequence

from .interfaces import DocumentType, Profile

DEFAULT_DOCUMENT_TYPE = DocumentType.FACTURA_ELECTRONICA

DocumentTypePolicy = Callable[[Profile], DocumentType]


def most_frequent_document_type(history: Iterable[DocumentType]) -> DocumentType:
    """Pick the most frequently issued type.

    An empty history or a tie for the top count resolves to
    ``FACTURA ELECTRONICA``.
    """
    ranking = Counter(history).most_common(2)
    if not ranking:
        return DEFAULT_DOCUMENT_TYPE
    if len(ranking) > 1 and ranking[0][1] == ranking[1][1]:
        return DEFAULT_DOCUMENT_TYPE
    return ranking[0][0]


def default_document_type_policy(profile: Profile) -> DocumentType:
    return DEFAULT_DOCUMENT_TYPE


def history_document_type_policy(history: Sequence[DocumentType]) -> DocumentTypePolicy:
    """Build a policy backed by a known issuance history."""

    def policy(profile: Profile) -> DocumentType:
        return most_frequent_document_type(history)

    return policy
