"""Pure functions that find an on-chain transaction id in a backend response.

Each extractor returns the id or None. :data:`TX_ID_EXTRACTORS` fixes the
order they are tried in.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Callable, Iterable, Optional

from solders.transaction import VersionedTransaction

from .. import base58

logger = logging.getLogger(__name__)

Extractor = Callable[[Any], Optional[str]]


def _non_empty(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _on_chain(response: Any) -> dict[str, Any]:
    if isinstance(response, dict) and isinstance(response.get("onChain"), dict):
        return response["onChain"]
    return {}


def on_chain_tx_id(response: Any) -> Optional[str]:
    return _non_empty(_on_chain(response).get("txId"))


def signature_field(response: Any) -> Optional[str]:
    if not isinstance(response, dict):
        return None
    return _non_empty(response.get("signature"))


def tx_id_field(response: Any) -> Optional[str]:
    if not isinstance(response, dict):
        return None
    return _non_empty(response.get("txId"))


def first_signature_of(blob: str) -> Optional[str]:
    """Base58 first signature of a Base64 serialized versioned transaction.

    Returns None for blobs that do not decode, or whose first signature is
    still all zeros (unsigned).
    """
    try:
        raw = base64.b64decode(blob, validate=True)
        transaction = VersionedTransaction.from_bytes(raw)
    except Exception as e:
        logger.debug("Could not decode transaction blob: %s", e)
        return None
    if not transaction.signatures:
        return None
    signature = bytes(transaction.signatures[0])
    if not any(signature):
        return None
    return base58.encode(signature)


def on_chain_transaction_blob(response: Any) -> Optional[str]:
    blob = _non_empty(_on_chain(response).get("transaction"))
    if blob is None:
        return None
    return first_signature_of(blob)


TX_ID_EXTRACTORS: tuple[Extractor, ...] = (
    on_chain_tx_id,
    signature_field,
    tx_id_field,
    on_chain_transaction_blob,
)


def first_match(
    response: Any, extractors: Iterable[Extractor] = TX_ID_EXTRACTORS
) -> Optional[str]:
    """Return the first id any extractor finds, trying them in order."""
    for extractor in extractors:
        found = extractor(response)
        if found:
            return found
    return None
