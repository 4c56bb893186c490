# =============================================================================
# cloudtree_core/offline/bootstrap.py
# Construction and Lifecycle of the Offline Stack
# =============================================================================
"""
Builds every offline component once and injects the shared collaborators.

There is no module-level store handle: the application (or a test) owns the
OfflineStack and decides when it starts and stops.
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
import logging

import requests

from cloudtree_core.api.config_manager import APIConfigManager
from cloudtree_core.api.soil_connector import SoilAPIConnector
from cloudtree_core.offline.connection_manager import ConnectionManager
from cloudtree_core.offline.id_mapper import IdentityMapper
from cloudtree_core.offline.local_database import LocalDatabase
from cloudtree_core.offline.sync_engine import SyncEngine
from cloudtree_core.offline.unified_data_service import UnifiedDataService

logger = logging.getLogger(__name__)


@dataclass
class OfflineStack:
    """All offline components, wired together."""
    local_db: LocalDatabase
    id_mapper: IdentityMapper
    gateway: SoilAPIConnector
    connection_manager: ConnectionManager
    sync_engine: SyncEngine
    data_service: UnifiedDataService

    def startup(self) -> None:
        """
        Open the local store.

        Raises:
            LocalStoreError: the store cannot be opened; the app must not
                continue without it.
        """
        self.local_db.initialize()
        logger.info("Offline stack started")

    def shutdown(self) -> None:
        self.gateway.close()
        self.connection_manager.close()
        self.local_db.close()
        logger.info("Offline stack stopped")


def build_offline_stack(
    config_manager: Optional[APIConfigManager] = None,
    db_path: Optional[Union[str, Path]] = None,
    gateway: Optional[SoilAPIConnector] = None,
    session: Optional[requests.Session] = None,
) -> OfflineStack:
    """
    Construct the offline stack from configuration.

    Args:
        config_manager: Source of backend and storage settings
        db_path: Overrides the configured database path
        gateway: Pre-built backend connector (tests pass a fake)
        session: HTTP session shared by the connector and connectivity probe

    Returns:
        An OfflineStack that has not been started yet
    """
    config_manager = config_manager or APIConfigManager()

    local_db = LocalDatabase(db_path if db_path is not None else config_manager.get_database_path())
    id_mapper = IdentityMapper(local_db)
    gateway = gateway or config_manager.get_soil_connector(session=session)
    connection_manager = ConnectionManager(
        local_db,
        config_manager.get_base_url(),
        timeout=config_manager.get_connectivity_timeout(),
        session=session,
    )

    return OfflineStack(
        local_db=local_db,
        id_mapper=id_mapper,
        gateway=gateway,
        connection_manager=connection_manager,
        sync_engine=SyncEngine(local_db, id_mapper, gateway, connection_manager),
        data_service=UnifiedDataService(local_db, id_mapper, gateway, connection_manager),
    )
