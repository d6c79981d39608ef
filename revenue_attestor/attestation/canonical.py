"""
Canonical serialization and keccak256 hashing of attestations.

The canonical string is the contract surface for independent verifiers:
keys sorted at every object level, arrays left in order, two-space
indentation, raw UTF-8. Anything that could render differently across
runtimes (floats, NaN, over-precise decimals) is rejected up front.
"""

import json
import math
from typing import Any, Mapping, Union

from Crypto.Hash import keccak

from revenue_attestor.attestation.schema import (
    COUNT_FIELDS,
    CURRENCY_FIELDS,
    CURRENCY_PATTERN,
    RATE_FIELDS,
    RATE_PATTERN,
    AttestationV1,
)
from revenue_attestor.domain.exceptions import AttestationValidationError

Document = Union[AttestationV1, Mapping[str, Any]]


def _sort_keys(value: Any, path: str = "$") -> Any:
    """Recursively rebuild mappings in sorted key order; reject unstable scalars"""
    if isinstance(value, Mapping):
        for key in value:
            if not isinstance(key, str):
                raise AttestationValidationError(f"{path}: object keys must be strings, got {key!r}")
        return {key: _sort_keys(value[key], f"{path}.{key}") for key in sorted(value) if value[key] is not None}
    if isinstance(value, (list, tuple)):
        return [_sort_keys(item, f"{path}[{index}]") for index, item in enumerate(value)]
    if isinstance(value, float):
        # Float text differs across runtimes; only fixed-decimal strings are allowed
        reason = "non-finite number" if not math.isfinite(value) else "floating-point number"
        raise AttestationValidationError(f"{path}: {reason} {value!r} cannot be serialized canonically")
    if value is None or isinstance(value, (str, bool, int)):
        return value
    raise AttestationValidationError(f"{path}: unsupported value type {type(value).__name__}")


def _validate_metrics(metrics: Any) -> None:
    if not isinstance(metrics, Mapping):
        raise AttestationValidationError("$.metrics must be an object")
    for name in CURRENCY_FIELDS:
        value = metrics.get(name)
        if not isinstance(value, str) or not CURRENCY_PATTERN.fullmatch(value):
            raise AttestationValidationError(f"$.metrics.{name}: expected 2-decimal string, got {value!r}")
    for name in RATE_FIELDS:
        value = metrics.get(name)
        if value is None and name == "growth_t30":
            continue
        if not isinstance(value, str) or not RATE_PATTERN.fullmatch(value):
            raise AttestationValidationError(f"$.metrics.{name}: expected 4-decimal string, got {value!r}")
    for name in COUNT_FIELDS:
        value = metrics.get(name)
        if value is None and name == "chargebacks":
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise AttestationValidationError(f"$.metrics.{name}: expected non-negative integer, got {value!r}")


def to_canonical_dict(doc: Document) -> dict:
    """Validated, key-sorted plain dict for a document"""
    if isinstance(doc, AttestationV1):
        data = doc.to_document()
    elif isinstance(doc, Mapping):
        data = doc
    else:
        raise AttestationValidationError(f"Cannot serialize {type(doc).__name__} as an attestation")

    if "metrics" in data:
        _validate_metrics(data["metrics"])
    return _sort_keys(data)


def serialize_attestation(doc: Document) -> str:
    """
    Serialize attestation to its canonical JSON string.

    Raises:
        AttestationValidationError: If any value cannot be rendered identically everywhere
    """
    return json.dumps(to_canonical_dict(doc), indent=2, separators=(",", ": "), ensure_ascii=False)


def keccak256_hex(data: bytes) -> str:
    """0x-prefixed keccak256 digest (Keccak padding, not FIPS SHA3-256)"""
    digest = keccak.new(digest_bits=256)
    digest.update(data)
    return "0x" + digest.hexdigest()


def hash_attestation(doc: Document) -> str:
    """keccak256 over the UTF-8 bytes of the canonical serialization"""
    return keccak256_hex(serialize_attestation(doc).encode("utf-8"))


def verify_attestation_hash(doc: Document, expected_hash: str) -> bool:
    """Recompute the hash of a received document and compare it to the signed value"""
    try:
        actual = hash_attestation(doc)
    except AttestationValidationError:
        return False
    return actual.lower() == expected_hash.strip().lower()
