"""Pytest fixtures for testing"""

from datetime import datetime
from typing import List

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from revenue_attestor.api.main import create_app
from revenue_attestor.domain.models import NormalizedOrder, NormalizedRefund
from tests.helpers import NOW, make_order, make_refund


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def sample_orders() -> List[NormalizedOrder]:
    """Three paid orders inside the trailing 30 days: $100, $150 (with $10 off) and $200"""
    return [
        make_order("o1", "2024-06-10T15:00:00Z", 10000, customer_id="c1"),
        make_order("o2", "2024-06-15T15:00:00Z", 15000, discount_cents=1000, customer_id="c2"),
        make_order("o3", "2024-06-20T15:00:00Z", 20000, customer_id="c1", line_items_count=2),
    ]


@pytest.fixture
def sample_refunds() -> List[NormalizedRefund]:
    """One $20 refund against the second order"""
    return [make_refund("r1", "2024-06-18T10:00:00Z", "o2", 2000)]


@pytest.fixture
def app() -> FastAPI:
    return create_app()


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    """FastAPI test client; tests override provider dependencies on `app`"""
    return TestClient(app)
