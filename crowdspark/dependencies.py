"""
Dependency wiring for the FastAPI app.

Each collaborator is a process-wide singleton; tests substitute fakes through
`app.dependency_overrides` or by resetting the in-memory implementations.
"""

from __future__ import annotations

from crowdspark.config import get_settings
from crowdspark.db import DbClient, InMemoryDbClient, SqlDbClient
from crowdspark.notifications import ConnectionRegistry, Notifier, RedisNotifier
from crowdspark.payments import InMemoryPaymentGateway, PaymentGateway, RazorpayGateway
from crowdspark.storage import InMemoryStorageClient, S3StorageClient, StorageClient

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_payment_gateway: PaymentGateway | None = None
_connection_registry: ConnectionRegistry | None = None
_notifier: Notifier | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton store so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = SqlDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.media_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.media_bucket,
            region=settings.media_region or "",
            endpoint=settings.media_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.media_public_base_url or "",
        )
    return _storage_client


def get_payment_gateway() -> PaymentGateway:
    global _payment_gateway
    if _payment_gateway:
        return _payment_gateway

    settings = get_settings()
    if (
        settings.use_in_memory_backends
        or not settings.razorpay_key_id
        or not settings.razorpay_key_secret
    ):
        _payment_gateway = InMemoryPaymentGateway(currency=settings.payment_currency)
    else:
        _payment_gateway = RazorpayGateway(
            settings.razorpay_key_id,
            settings.razorpay_key_secret,
            base_url=settings.razorpay_api_base,
            currency=settings.payment_currency,
        )
    return _payment_gateway


def get_connection_registry() -> ConnectionRegistry:
    """
    Return the registry of sockets connected to this process.
    """
    global _connection_registry
    if _connection_registry is None:
        _connection_registry = ConnectionRegistry()
    return _connection_registry


def get_notifier() -> Notifier:
    """
    Return the notifier used by handlers: Redis fan-out when configured,
    otherwise the local registry directly.
    """
    global _notifier
    if _notifier:
        return _notifier

    settings = get_settings()
    registry = get_connection_registry()
    if settings.redis_url and not settings.use_in_memory_backends:
        _notifier = RedisNotifier(
            registry,
            url=settings.redis_url,
            channel=settings.notifications_channel,
        )
    else:
        _notifier = registry
    return _notifier
