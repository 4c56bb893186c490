# =============================================================================
# cloudtree_core/offline/unified_data_service.py
# Unified Data Service - Single API for Online/Offline Operations
# =============================================================================
"""
UnifiedDataService - The primary API for all soil data operations.

Every operation picks its path from the connectivity oracle:
- Online: the backend is called first; nothing is written locally on success
- Remote failure: the operation falls back to the local store
- Offline (or forced offline): straight to the local store

Rows written locally get a local id and `pending` status; the sync engine
uploads them later. Only LocalStoreError escapes this layer.

Usage:
------
stack = build_offline_stack()
stack.startup()
service = stack.data_service

soils = service.get_soils()
local_id = service.save_soil_data(request)   # None when the backend took it
print(service.get_status())
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Any, Dict, List, Optional
import logging

from cloudtree_core.errors import IdentityMappingError, RemoteGatewayError
from cloudtree_core.offline.connection_manager import ConnectionManager
from cloudtree_core.offline.id_mapper import IdentityMapper
from cloudtree_core.offline.local_database import LocalDatabase
from cloudtree_core.offline.models import (
    CreateSoilRequest,
    EntityType,
    Parameter,
    Soil,
    SyncStatus,
    UpdateParameterRequest,
)

if TYPE_CHECKING:
    from cloudtree_core.api.soil_connector import SoilAPIConnector

logger = logging.getLogger(__name__)

# Failures that send an operation down the local path
FALLBACK_ERRORS = (RemoteGatewayError, IdentityMappingError)


class UnifiedDataService:
    """
    Facade over the local store and the backend gateway.

    Creates follow the remote-first state machine. Deletes always remove the
    local row and also delete remotely when possible. Edits of a reading that
    is already on the backend are kept locally as `conflict`, since the
    backend has no update endpoint.
    """

    def __init__(
        self,
        local_db: LocalDatabase,
        id_mapper: IdentityMapper,
        gateway: SoilAPIConnector,
        connection_manager: ConnectionManager,
    ):
        self._local_db = local_db
        self._id_mapper = id_mapper
        self._gateway = gateway
        self._connection_manager = connection_manager

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_online(self) -> bool:
        """Effective-online: not forced offline and the backend answers."""
        return self._connection_manager.is_effective_online()

    def get_offline_mode(self) -> bool:
        return self._connection_manager.get_offline_mode()

    def set_offline_mode(self, offline: bool) -> None:
        self._connection_manager.set_offline_mode(offline)

    # =========================================================================
    # READS
    # =========================================================================

    def get_soils(self) -> List[Soil]:
        """
        Backend soils when online, local mirror otherwise.

        Soils read from the backend are mirrored locally as `synced` rows, so
        a reading saved later against one of their backend ids still has a
        local parent if it has to fall back to the local store.
        """
        if self.is_online:
            try:
                soils = self._gateway.get_soils()
            except FALLBACK_ERRORS as e:
                logger.warning(f"Backend read failed, using local soils: {e}")
            else:
                self._mirror_soils(soils)
                return soils

        return self._local_db.get_soils()

    def _mirror_soils(self, soils: List[Soil]) -> None:
        for remote in soils:
            local_id = self._id_mapper.adopt_backend_id(remote.id, EntityType.SOIL)
            self._local_db.store_remote_soil(local_id, remote)
        logger.debug(f"Mirrored {len(soils)} backend soils locally")

    def get_parameters(self, soil_id: str) -> List[Parameter]:
        """
        Readings of one soil. A local soil id is translated to its backend id
        for the remote read; a soil never uploaded is read locally.
        """
        if self.is_online:
            backend_id = self._id_mapper.resolve_backend_id(soil_id)
            if backend_id is None:
                logger.debug(f"Soil {soil_id} not synced yet; reading parameters locally")
            else:
                try:
                    return self._gateway.get_parameters(backend_id)
                except FALLBACK_ERRORS as e:
                    logger.warning(f"Backend read failed, using local parameters: {e}")

        local_id = self._id_mapper.resolve_local_id(soil_id, EntityType.SOIL) or soil_id
        return self._local_db.get_parameters_for_soil(local_id)

    # =========================================================================
    # CREATES
    # =========================================================================

    def save_soil_data(self, request: CreateSoilRequest) -> Optional[str]:
        """
        Create a soil with its first reading.

        Returns:
            The local soil id if the data was stored locally (pending),
            None if the backend accepted it directly.
        """
        if self.is_online:
            try:
                self._gateway.create_soil(request)
                logger.info(f"Soil '{request.soil.name}' saved to backend")
                return None
            except FALLBACK_ERRORS as e:
                logger.warning(f"Backend save failed, saving soil locally: {e}")

        return self._local_db.save_local_soil(request)

    def save_parameter_data(self, request: UpdateParameterRequest) -> Optional[str]:
        """
        Add a reading to a soil given by local or backend id.

        Returns:
            The local parameter id if stored locally, None if sent to the backend.
        """
        if self.is_online:
            try:
                self._gateway.add_parameter(self._remote_request(request))
                logger.info(f"Parameter for soil {request.soil_id} saved to backend")
                return None
            except FALLBACK_ERRORS as e:
                logger.warning(f"Backend save failed, saving parameter locally: {e}")

        local_soil_id = self._id_mapper.resolve_local_id(request.soil_id, EntityType.SOIL) or request.soil_id
        return self._local_db.save_local_parameter(
            UpdateParameterRequest(local_soil_id, request.parameters)
        )

    def _remote_request(self, request: UpdateParameterRequest) -> UpdateParameterRequest:
        backend_soil_id = self._id_mapper.resolve_backend_id(request.soil_id)
        if backend_soil_id is None:
            raise IdentityMappingError(
                f"Soil {request.soil_id} has not been synced to the backend",
                entity_id=request.soil_id,
                entity_type=EntityType.SOIL.value,
            )
        return UpdateParameterRequest(backend_soil_id, request.parameters)

    # =========================================================================
    # UPDATE
    # =========================================================================

    def update_parameter(self, parameter_id: str, request: UpdateParameterRequest) -> bool:
        """
        Record new readings for an existing parameter.

        Online, the readings are posted as a new backend reading. Otherwise
        the local row is edited: `pending` if never uploaded, `conflict` if
        it already has a backend counterpart.

        Returns:
            False if neither the backend nor a local row took the update.
        """
        if self.is_online:
            try:
                self._gateway.add_parameter(self._remote_request(request))
                logger.info(f"Updated readings for parameter {parameter_id} sent to backend")
                return True
            except FALLBACK_ERRORS as e:
                logger.warning(f"Backend update failed, updating parameter locally: {e}")

        local_id = self._id_mapper.resolve_local_id(parameter_id, EntityType.PARAMETER)
        if local_id is None:
            logger.warning(f"Parameter {parameter_id} not found locally; update dropped")
            return False

        uploaded = self._id_mapper.resolve_backend_id(local_id) is not None
        status = SyncStatus.CONFLICT if uploaded else SyncStatus.PENDING
        if uploaded:
            logger.warning(f"Parameter {local_id} already exists on backend; marked as conflict")

        return self._local_db.update_local_parameter(local_id, request.parameters, status)

    # =========================================================================
    # DELETES
    # =========================================================================

    def delete_parameter(self, parameter_id: str) -> bool:
        """Delete a reading locally and, when possible, on the backend."""
        local_id = self._id_mapper.resolve_local_id(parameter_id, EntityType.PARAMETER)
        backend_id = self._id_mapper.resolve_backend_id(local_id or parameter_id)

        remote_deleted = False
        if backend_id and self.is_online:
            try:
                self._gateway.delete_parameter(backend_id)
                remote_deleted = True
            except FALLBACK_ERRORS as e:
                logger.warning(f"Backend delete of parameter {backend_id} failed: {e}")

        local_deleted = self._local_db.delete_parameter(local_id) if local_id else False
        if remote_deleted and local_id:
            self._id_mapper.unmap(local_id)

        return remote_deleted or local_deleted

    def delete_soil(self, soil_id: str) -> bool:
        """Delete a soil and its readings locally and, when possible, on the backend."""
        local_id = self._id_mapper.resolve_local_id(soil_id, EntityType.SOIL)
        backend_id = self._id_mapper.resolve_backend_id(local_id or soil_id)
        parameter_ids = (
            [p.id for p in self._local_db.get_parameters_for_soil(local_id)] if local_id else []
        )

        remote_deleted = False
        if backend_id and self.is_online:
            try:
                self._gateway.delete_soil(backend_id)
                remote_deleted = True
            except FALLBACK_ERRORS as e:
                logger.warning(f"Backend delete of soil {backend_id} failed: {e}")

        local_deleted = self._local_db.delete_soil(local_id) if local_id else False
        if remote_deleted and local_id:
            # The backend cascades to the soil's readings
            for entity_id in [local_id] + parameter_ids:
                self._id_mapper.unmap(entity_id)

        return remote_deleted or local_deleted

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of connectivity and local store contents."""
        pending = self._local_db.get_pending_items()
        return {
            "online": self.is_online,
            "offline_mode": self.get_offline_mode(),
            "connection": self._connection_manager.get_status_display(),
            "local": {
                "soils": self._local_db.count("Soils"),
                "parameters": self._local_db.count("Parameters"),
                "mappings": self._local_db.count("ID_Mappings"),
            },
            "pending": {
                "soils": len(pending.soils),
                "parameters": len(pending.parameters),
            },
        }
