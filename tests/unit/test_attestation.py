"""Unit tests for attestation building, canonical serialization and hashing"""

import json
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from revenue_attestor.attestation.builder import build_attestation, format_fixed
from revenue_attestor.attestation.canonical import (
    hash_attestation,
    keccak256_hex,
    serialize_attestation,
    verify_attestation_hash,
)
from revenue_attestor.attestation.schema import AttestationV1
from revenue_attestor.domain.exceptions import AttestationValidationError
from revenue_attestor.domain.kpi import compute_kpis

from tests.helpers import NOW

MERCHANT = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"
BUILT_AT = datetime(2024, 7, 1, tzinfo=timezone.utc)


@pytest.fixture
def kpis(sample_orders, sample_refunds):
    return compute_kpis(
        sample_orders, sample_refunds, timezone="America/New_York", window_days=30, prior_window_days=30, now=NOW
    )


@pytest.fixture
def attestation(kpis) -> AttestationV1:
    return build_attestation(kpis, MERCHANT, built_at=BUILT_AT)


def test_format_fixed():
    """Test fixed-point rendering rounds half-up and never emits negative zero"""
    assert format_fixed(Decimal("2.675"), 2) == "2.68"
    assert format_fixed(Decimal("2.665"), 2) == "2.67"
    assert format_fixed(Decimal("-0.001"), 2) == "0.00"
    assert format_fixed(Decimal(18), 4) == "18.0000"
    assert format_fixed("1234567.5", 2) == "1234567.50"
    assert format_fixed(Decimal(1) / Decimal(3), 4) == "0.3333"
    assert format_fixed(Decimal("-12.5"), 2) == "-12.50"


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), "abc", Decimal("NaN"), Decimal("1E+40")])
def test_format_fixed_rejects_unrenderable_values(bad):
    with pytest.raises(AttestationValidationError):
        format_fixed(bad, 2)


def test_build_attestation_metrics(attestation):
    """Test every metric is a fixed-decimal string or an integer count"""
    doc = attestation.to_document()
    metrics = doc["metrics"]

    assert doc["schemaVersion"] == "1.0.0"
    assert doc["merchant"] == {"merchantId": MERCHANT, "currency": "USD"}
    assert doc["period"]["timezone"] == "America/New_York"
    assert doc["nonce"] == "1719792000000"
    assert doc["timestamp"] == "2024-07-01T00:00:00.000Z"
    assert "previousCid" not in doc

    assert metrics["gross_sales"] == "450.00"
    assert metrics["discounts"] == "10.00"
    assert metrics["refunds"] == "20.00"
    assert metrics["net_sales"] == "420.00"
    assert metrics["aov"] == "140.00"
    assert metrics["orders_count"] == 3
    assert metrics["items_sold"] == 4
    assert metrics["discount_penetration"] == "0.3333"
    assert metrics["discount_rate"] == "0.0222"
    assert metrics["returning_customer_rate"] == "0.0000"
    assert metrics["growth_t30"] == "0.0000"  # no prior-window revenue
    assert "chargebacks" not in metrics


def test_build_attestation_rejects_non_finite_kpis(kpis):
    with pytest.raises(AttestationValidationError):
        build_attestation(replace(kpis, aov=Decimal("NaN")), MERCHANT, built_at=BUILT_AT)


def test_build_attestation_rejects_empty_merchant(kpis):
    with pytest.raises(AttestationValidationError):
        build_attestation(kpis, "", built_at=BUILT_AT)


def test_attestation_is_immutable(attestation):
    with pytest.raises(ValidationError):
        attestation.nonce = "other"


def test_canonical_format_is_exact():
    """Test key sorting, two-space indent, raw UTF-8 and dropped nulls"""
    doc = {"b": 1, "a": {"d": "x", "c": [2, 1]}, "Ã©": "Ã¼", "z": None}

    assert serialize_attestation(doc) == (
        "{\n"
        '  "a": {\n'
        '    "c": [\n'
        "      2,\n"
        "      1\n"
        "    ],\n"
        '    "d": "x"\n'
        "  },\n"
        '  "b": 1,\n'
        '  "Ã©": "Ã¼"\n'
        "}"
    )


def test_serialization_is_key_order_independent(attestation):
    """Test documents built with keys in different orders serialize identically"""
    doc = attestation.to_document()
    shuffled = json.loads(json.dumps(doc))
    reordered = {key: shuffled[key] for key in reversed(list(shuffled))}
    reordered["metrics"] = {key: shuffled["metrics"][key] for key in sorted(shuffled["metrics"], reverse=True)}

    assert serialize_attestation(reordered) == serialize_attestation(doc)
    assert serialize_attestation(reordered) == serialize_attestation(attestation)


def test_canonical_keys_are_sorted_at_every_level(attestation):
    canonical = serialize_attestation(attestation)
    parsed = json.loads(canonical)

    assert list(parsed) == sorted(parsed)
    assert list(parsed["metrics"]) == sorted(parsed["metrics"])
    assert list(parsed["merchant"]) == ["currency", "merchantId"]


def test_keccak_known_vector():
    """Test Keccak-256 rather than FIPS SHA3-256"""
    assert keccak256_hex(b"") == "0xc5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"


def test_hash_is_deterministic(attestation):
    first = hash_attestation(attestation)

    assert first == hash_attestation(attestation)
    assert first == hash_attestation(attestation.to_document())
    assert first.startswith("0x") and len(first) == 66


def test_hash_changes_with_any_metric(attestation):
    """Test avalanche spot check: a one-cent change yields an unrelated digest"""
    doc = attestation.to_document()
    tampered = json.loads(json.dumps(doc))
    tampered["metrics"]["net_sales"] = "420.01"

    first_hash = hash_attestation(doc)
    tampered_hash = hash_attestation(tampered)

    assert first_hash != tampered_hash
    differing = sum(1 for a, b in zip(first_hash[2:], tampered_hash[2:]) if a != b)
    assert differing > 32


@pytest.mark.parametrize(
    "field, value",
    [
        ("gross_sales", 450.0),
        ("gross_sales", "450.0"),
        ("discount_rate", "0.02"),
        ("gross_sales", "٤٥٠.٠٠"),
        ("net_sales", "420.00\n"),
        ("discount_rate", "0.0222\n"),
        ("orders_count", 3.0),
        ("orders_count", "3"),
        ("orders_count", True),
    ],
)
def test_serializer_rejects_unstable_metrics(attestation, field, value):
    """Test floats, malformed decimal strings and non-integer counts are rejected"""
    doc = json.loads(json.dumps(attestation.to_document()))
    doc["metrics"][field] = value

    with pytest.raises(AttestationValidationError):
        serialize_attestation(doc)


@pytest.mark.parametrize("value", ["420.00\n", "٤٢٠.٠٠", " 420.00"])
def test_schema_rejects_malformed_currency_strings(attestation, value):
    """Test the model accepts only plain ASCII fixed-point strings"""
    doc = json.loads(json.dumps(attestation.to_document()))
    doc["metrics"]["net_sales"] = value

    with pytest.raises(ValidationError):
        AttestationV1.model_validate(doc)


@pytest.mark.parametrize("value", [1.5, float("nan"), float("inf")])
def test_serializer_rejects_floats_anywhere(value):
    with pytest.raises(AttestationValidationError):
        serialize_attestation({"nonce": value})


def test_chain_scenario(kpis):
    """Test B references A's hash and any change to A breaks the reference"""
    a = build_attestation(kpis, MERCHANT, built_at=BUILT_AT)
    a_hash = hash_attestation(a)

    b = build_attestation(kpis, MERCHANT, previous_cid=a_hash, built_at=datetime(2024, 8, 1, tzinfo=timezone.utc))
    b_doc = b.to_document()

    assert b_doc["previousCid"] == a_hash
    assert verify_attestation_hash(a, b_doc["previousCid"])
    assert hash_attestation(b) != a_hash

    tampered = json.loads(json.dumps(a.to_document()))
    tampered["metrics"]["orders_count"] = 4
    assert not verify_attestation_hash(tampered, b_doc["previousCid"])


def test_verify_attestation_hash_is_case_insensitive(attestation):
    expected = hash_attestation(attestation)

    assert verify_attestation_hash(attestation, expected.upper().replace("0X", "0x"))
    assert not verify_attestation_hash({"metrics": {"gross_sales": 1.0}}, expected)
