"""
Weaviate client factory (weaviate-python-client v4).

Configuration comes from Django settings, which read the environment:

    WEAVIATE_ENABLED   – "true" / "false"  (default: "true")
    WEAVIATE_URL       – host / IP of the Weaviate instance  (required)
    WEAVIATE_HTTP_PORT – HTTP port                           (required)
    WEAVIATE_GRPC_PORT – gRPC port                           (required)
    WEAVIATE_API_KEY   – optional API key

No network I/O is performed at import time.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import weaviate
from django.conf import settings
from weaviate.auth import AuthApiKey
from weaviate.exceptions import WeaviateBaseError

from study.services.base import ServiceDisabled, ServiceNotConfigured

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeaviateSettings:
    host: str
    http_port: int
    grpc_port: int
    api_key: Optional[str] = None


def _port(name: str, raw) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ServiceNotConfigured(f'{name} must be an integer, got: {raw!r}')


def load_settings() -> WeaviateSettings:
    """Validate the ``WEAVIATE_*`` settings.

    Raises:
        ServiceDisabled: if ``WEAVIATE_ENABLED`` is false.
        ServiceNotConfigured: if required values are missing or invalid.
    """
    if not getattr(settings, 'WEAVIATE_ENABLED', True):
        raise ServiceDisabled('Weaviate service is disabled (WEAVIATE_ENABLED=false).')

    values = {
        name: str(getattr(settings, name, '') or '').strip()
        for name in ('WEAVIATE_URL', 'WEAVIATE_HTTP_PORT', 'WEAVIATE_GRPC_PORT')
    }
    missing = [name for name, val in values.items() if not val]
    if missing:
        raise ServiceNotConfigured(
            f"Required Weaviate setting(s) not set: {', '.join(missing)}"
        )

    return WeaviateSettings(
        host=values['WEAVIATE_URL'],
        http_port=_port('WEAVIATE_HTTP_PORT', values['WEAVIATE_HTTP_PORT']),
        grpc_port=_port('WEAVIATE_GRPC_PORT', values['WEAVIATE_GRPC_PORT']),
        api_key=(getattr(settings, 'WEAVIATE_API_KEY', '') or '').strip() or None,
    )


def get_client() -> weaviate.WeaviateClient:
    """
    Create and return a connected Weaviate v4 client.

    Raises:
        ServiceDisabled / ServiceNotConfigured: see :func:`load_settings`.
        weaviate.exceptions.WeaviateConnectionError: if the server is unreachable.
    """
    cfg = load_settings()
    auth = AuthApiKey(cfg.api_key) if cfg.api_key else None

    logger.debug('Connecting to Weaviate at %s (http=%s, grpc=%s)', cfg.host, cfg.http_port, cfg.grpc_port)

    return weaviate.connect_to_local(
        host=cfg.host,
        port=cfg.http_port,
        grpc_port=cfg.grpc_port,
        auth_credentials=auth,
    )


def is_available() -> bool:
    """
    Return True if Weaviate is configured and reachable, False otherwise.

    Never raises; safe to call as a health/readiness probe.
    """
    try:
        client = get_client()
    except (ServiceDisabled, ServiceNotConfigured) as exc:
        logger.debug('Weaviate not available: %s', exc)
        return False
    except WeaviateBaseError as exc:
        logger.warning('Weaviate not reachable: %s', exc)
        return False
    try:
        return client.is_ready()
    finally:
        client.close()
