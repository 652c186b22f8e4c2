"""Deterministic weighted A/B variant assignment."""

import hashlib
from typing import Any, Iterable

_SCALE = float(2 ** 64)


def _weight_of(variant: Any) -> float:
    if isinstance(variant, dict):
        return float(variant.get('weight') or 0)
    return float(variant.weight or 0)


def _id_of(variant: Any) -> str:
    if isinstance(variant, dict):
        return variant['id']
    return variant.id


def bucket(lead_id: str, test_id: str) -> float:
    """Map a (lead, test) pair onto [0, 1) using the first 8 bytes of SHA-256."""
    digest = hashlib.sha256(f"{lead_id}{test_id}".encode('utf-8')).digest()
    return int.from_bytes(digest[:8], 'big') / _SCALE


def assign_variant(lead_id: str, test_id: str, variants: Iterable[Any]) -> str:
    """
    Pick a variant id for a lead. The same inputs always return the same
    variant, and over many leads the split converges to the weights.

    Variants are ``ABTestVariant`` rows or dicts with ``id`` and ``weight``.
    """
    variants = list(variants)
    if not variants:
        raise ValueError("Cannot assign a variant from an empty list")

    total = sum(_weight_of(variant) for variant in variants)
    if total <= 0:
        raise ValueError("Variant weights must sum to a positive number")

    target = bucket(lead_id, test_id) * total
    cumulative = 0.0
    for variant in variants:
        weight = _weight_of(variant)
        if weight <= 0:
            continue
        cumulative += weight
        if target < cumulative:
            return _id_of(variant)

    # Float rounding at the top edge
    return _id_of([variant for variant in variants if _weight_of(variant) > 0][-1])
