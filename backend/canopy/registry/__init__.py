# Overview: Registry (seed-to-sale tracking system) API client package.

from .client import RegistryClient, TAG_TYPE_PLANT, TAG_TYPE_PACKAGE
from .errors import (
    RegistryError,
    RegistryApiError,
    RegistryTransportError,
    RegistryTimeoutError,
    is_transport_failure,
)

__all__ = [
    "RegistryClient",
    "TAG_TYPE_PLANT",
    "TAG_TYPE_PACKAGE",
    "RegistryError",
    "RegistryApiError",
    "RegistryTransportError",
    "RegistryTimeoutError",
    "is_transport_failure",
]
