"""
FarmEscrow: Canonical JSON Encoding, RFC 8785 (JCS)

This is the ONLY canonicalization permitted in FarmEscrow.
The escrow terms digest carried in the creation memo MUST use this module,
so any party holding the order record can recompute it.

RFC 8785: https://www.rfc-editor.org/rfc/rfc8785
"""

import hashlib

import jcs as _jcs


def canonicalize(obj: dict) -> bytes:
    """
    Encode a dict to RFC 8785 canonical JSON bytes.

    Output is deterministic regardless of key insertion order.
    All values must be JSON-primitive (str, int, float, bool, None, list, dict).
    Pass Decimal amounts as strings.
    """
    return _jcs.canonicalize(obj)


def canonical_digest(obj: dict) -> bytes:
    """SHA-256 of the RFC 8785 canonical form, raw 32 bytes."""
    return hashlib.sha256(canonicalize(obj)).digest()


def escrow_terms_digest(
    farmer_public_key: str,
    buyer_public_key: str,
    amount: str,
    asset: str,
    deadline_unix_timestamp: int,
    order_id: str,
) -> bytes:
    """
    Digest binding a creation transaction to the order it settles.

    Returns 32 bytes, sized for a MEMO_HASH.
    """
    return canonical_digest({
        "amount":    amount,
        "asset":     asset,
        "buyer":     buyer_public_key,
        "deadline":  deadline_unix_timestamp,
        "farmer":    farmer_public_key,
        "order_id":  order_id,
    })
