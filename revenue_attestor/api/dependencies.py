"""Dependency injection for FastAPI endpoints"""

from typing import Callable, Dict

from fastapi import Request

from revenue_attestor.api.v1.schemas import ProviderConnection
from revenue_attestor.domain.exceptions import UnknownProviderError
from revenue_attestor.infrastructure.providers.base import ProviderClient
from revenue_attestor.infrastructure.providers.paypal import PayPalClient
from revenue_attestor.infrastructure.providers.plaid import PlaidClient
from revenue_attestor.infrastructure.providers.shopify import ShopifyClient
from revenue_attestor.infrastructure.providers.square import SquareClient
from revenue_attestor.infrastructure.providers.stripe import StripeClient
from revenue_attestor.infrastructure.providers.toast import ToastClient
from revenue_attestor.infrastructure.providers.woocommerce import WooCommerceClient
from revenue_attestor.services.attestation import AttestationService


def _required(connection: ProviderConnection, field_name: str) -> str:
    value = getattr(connection, field_name)
    if not value:
        raise UnknownProviderError(f"{connection.provider} requires '{field_name}'")
    return value


def _shopify(connection: ProviderConnection) -> ProviderClient:
    return ShopifyClient(shop=_required(connection, "shop"))


def _woocommerce(connection: ProviderConnection) -> ProviderClient:
    return WooCommerceClient(
        store_url=_required(connection, "store_url"),
        consumer_secret=_required(connection, "consumer_secret"),
    )


def _square(connection: ProviderConnection) -> ProviderClient:
    return SquareClient(location_ids=connection.location_ids, environment=connection.environment)


def _paypal(connection: ProviderConnection) -> ProviderClient:
    return PayPalClient(environment=connection.environment)


def _toast(connection: ProviderConnection) -> ProviderClient:
    return ToastClient(restaurant_guid=_required(connection, "restaurant_guid"), environment=connection.environment)


PROVIDER_FACTORIES: Dict[str, Callable[[ProviderConnection], ProviderClient]] = {
    "stripe": lambda connection: StripeClient(),
    "shopify": _shopify,
    "woocommerce": _woocommerce,
    "square": _square,
    "paypal": _paypal,
    "plaid": lambda connection: PlaidClient(),
    "toast": _toast,
}


def build_provider_client(connection: ProviderConnection) -> ProviderClient:
    """
    Construct the adapter for a request's provider connection.

    Raises:
        UnknownProviderError: If the provider is not supported or details are missing
    """
    factory = PROVIDER_FACTORIES.get(connection.provider.strip().lower())
    if factory is None:
        supported = ", ".join(sorted(PROVIDER_FACTORIES))
        raise UnknownProviderError(f"Unknown provider {connection.provider!r}; expected one of {supported}")
    return factory(connection)


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_provider_factory() -> Callable[[ProviderConnection], ProviderClient]:
    """Provide the adapter factory; tests override it to inject mock transports"""
    return build_provider_client


def get_attestation_service() -> AttestationService:
    return AttestationService()
