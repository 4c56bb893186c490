# =============================================================================
# cloudtree_core/offline/__init__.py
# Offline-First Data and Sync Layer for CloudTree
# =============================================================================
"""
Offline-First Architecture Module

Field readings are collected whether or not the soil backend is reachable.
Writes go to the backend when it answers and to a local SQLite mirror when
it does not; the sync engine reconciles the two later.

Architecture:
------------
                 UnifiedDataService
           (single API used by the screens)
                        |
          +-------------+-------------+
          v                           v
   ConnectionManager            IdentityMapper
   (online/offline)           (L_S00001 <-> S0001)
          |                           |
          v                           v
   SoilAPIConnector  <--- sync --->  LocalDatabase
      (backend)          SyncEngine     (SQLite)

Usage:
------
from cloudtree_core.offline.bootstrap import build_offline_stack

stack = build_offline_stack()
stack.startup()
stack.data_service.save_soil_data(request)
result = stack.sync_engine.full_sync()
stack.shutdown()
"""

from cloudtree_core.offline.models import (
    SyncStatus,
    EntityType,
    SyncOutcome,
    SoilRequest,
    ParameterRequest,
    CreateSoilRequest,
    UpdateParameterRequest,
    Soil,
    Parameter,
    IdMapping,
    SyncLogEntry,
    PendingItems,
    SyncResult,
)

from cloudtree_core.offline.local_database import LocalDatabase

from cloudtree_core.offline.id_mapper import (
    IdentityMapper,
    id_to_number,
    is_local_id,
    is_backend_id,
    format_local_id,
)

from cloudtree_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionStatus,
    ConnectionState,
)

from cloudtree_core.offline.sync_engine import (
    SyncEngine,
    SyncState,
)

from cloudtree_core.offline.unified_data_service import UnifiedDataService

__all__ = [
    # Domain types
    "SyncStatus",
    "EntityType",
    "SyncOutcome",
    "SoilRequest",
    "ParameterRequest",
    "CreateSoilRequest",
    "UpdateParameterRequest",
    "Soil",
    "Parameter",
    "IdMapping",
    "SyncLogEntry",
    "PendingItems",
    "SyncResult",
    # Local Database
    "LocalDatabase",
    # Identity Mapping
    "IdentityMapper",
    "id_to_number",
    "is_local_id",
    "is_backend_id",
    "format_local_id",
    # Connection Management
    "ConnectionManager",
    "ConnectionStatus",
    "ConnectionState",
    # Sync Engine
    "SyncEngine",
    "SyncState",
    # Unified Service (Main API)
    "UnifiedDataService",
]
