from .tenancy import Organization, Site
from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken
from .security import SecurityEvent, ImmutableRecordError
from .cultivation import Cultivar, Batch, InventoryLot, BATCH_STAGES
from .compliance import (
    RegistryCredential,
    RegistryItemCache,
    RegistryStrainCache,
    RegistryTagCache,
    RegistryPlantBatchCache,
    RegistryFacilityCache,
    RegistryMapping,
    RegistrySyncLog,
)

__all__ = [
    'Organization', 'Site',
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken',
    'SecurityEvent',
    'Cultivar', 'Batch', 'InventoryLot', 'BATCH_STAGES',
    'RegistryCredential', 'RegistryItemCache', 'RegistryStrainCache', 'RegistryTagCache',
    'RegistryPlantBatchCache', 'RegistryFacilityCache',
    'RegistryMapping', 'RegistrySyncLog', 'ImmutableRecordError',
]
