# =============================================================================
# cloudtree_core/offline/sync_engine.py
# Bidirectional Synchronization Engine
# =============================================================================
"""
SyncEngine - reconciles the local store with the soil backend.

Push (local -> backend): uploads pending soils (bundled with their first
reading) and pending readings of already-uploaded soils, recording an id
mapping for every row the backend accepts.

Pull (backend -> local): downloads every backend soil and reading and
upserts them as synced rows, reusing mappings so nothing is duplicated.

Both directions are tolerant of partial failure: one failing item is
recorded in the result's error list and the pass moves on. Failed items
stay pending and are retried by the next pass. Every pass writes a SyncLog
entry.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Set
import logging

from cloudtree_core.errors import CloudTreeError, SyncError, safe_execute
from cloudtree_core.logging import LogContext
from cloudtree_core.offline.id_mapper import IdentityMapper, is_backend_id
from cloudtree_core.offline.local_database import LocalDatabase
from cloudtree_core.offline.models import (
    CreateSoilRequest,
    EntityType,
    Parameter,
    Soil,
    SyncLogEntry,
    SyncOutcome,
    SyncResult,
    SyncStatus,
    UpdateParameterRequest,
)

if TYPE_CHECKING:
    from cloudtree_core.api.soil_connector import SoilAPIConnector
    from cloudtree_core.offline.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    last_result: Optional[SyncResult] = None
    total_synced: int = 0
    last_duration: Optional[float] = None  # seconds


def _describe(error: Exception) -> str:
    return error.message if isinstance(error, CloudTreeError) else str(error)


class SyncEngine:
    """
    Push/pull reconciliation between LocalDatabase and the soil backend.

    Usage:
        engine = SyncEngine(local_db, id_mapper, connector, connection_manager)
        result = engine.full_sync()
        print(result.to_dict())  # {"success": ..., "itemsSynced": ..., ...}

    One pass at a time: a pass requested while another is running returns
    an unsuccessful result immediately. There is no cancellation and no
    in-pass retry.
    """

    def __init__(
        self,
        local_db: LocalDatabase,
        id_mapper: IdentityMapper,
        gateway: SoilAPIConnector,
        connection_manager: Optional[ConnectionManager] = None,
    ):
        self._local_db = local_db
        self._id_mapper = id_mapper
        self._gateway = gateway
        self._connection_manager = connection_manager
        self._state = SyncState()
        self._callbacks: List[Callable[[SyncState], None]] = []

    @property
    def state(self) -> SyncState:
        """Get current sync state."""
        return self._state

    @property
    def is_syncing(self) -> bool:
        """Check if sync is in progress."""
        return self._state.is_syncing

    # =========================================================================
    # PUBLIC PASSES
    # =========================================================================

    def sync_to_server(self) -> SyncResult:
        """Upload all pending local changes to the backend."""
        return self._run_pass("Sync to server", self._push)

    def sync_from_server(self) -> SyncResult:
        """Download the backend's state into the local database."""
        return self._run_pass("Sync from server", self._pull)

    def full_sync(self) -> SyncResult:
        """Push then pull; both phases always run."""
        return self._run_pass("Full sync", self._full)

    def has_pending_changes(self) -> bool:
        return safe_execute(
            lambda: self._local_db.get_pending_items().total > 0,
            default=False,
            error_message="Error checking pending changes",
        )

    def get_pending_count(self) -> Dict[str, int]:
        def _count() -> Dict[str, int]:
            pending = self._local_db.get_pending_items()
            return {"soils": len(pending.soils), "parameters": len(pending.parameters)}

        return safe_execute(
            _count,
            default={"soils": 0, "parameters": 0},
            error_message="Error getting pending count",
        )

    def get_sync_history(self, limit: int = 10) -> List[SyncLogEntry]:
        return self._local_db.get_sync_history(limit)

    def _run_pass(self, operation: str, phase: Callable[[], SyncResult]) -> SyncResult:
        if self._state.is_syncing:
            logger.warning(f"{operation} requested while a sync is in progress")
            return SyncResult(
                success=False,
                message="Sync already in progress",
                errors=["Sync already in progress"],
            )

        if self._connection_manager is not None and not self._connection_manager.is_effective_online():
            result = SyncResult(message="Sync skipped: backend unreachable or offline mode enabled")
            result.add_error(result.message)
            self._log(SyncOutcome.ERROR, result)
            return result

        self._state.is_syncing = True
        self._state.last_sync = datetime.now()
        self._notify_callbacks()

        try:
            with LogContext(logger, operation) as timing:
                result = phase()
        finally:
            self._state.is_syncing = False

        self._state.last_duration = timing.elapsed
        self._state.last_result = result
        self._state.total_synced += result.items_synced
        if result.success:
            self._state.last_sync_success = datetime.now()
        self._notify_callbacks()
        return result

    # =========================================================================
    # PUSH
    # =========================================================================

    def _push(self) -> SyncResult:
        result = SyncResult()

        try:
            pending = self._local_db.get_pending_items()
            logger.info(
                f"Found {len(pending.soils)} pending soils and "
                f"{len(pending.parameters)} pending parameters"
            )

            # Readings already sent as part of a soil create in this pass
            bundled: Set[str] = set()

            for soil in pending.soils:
                try:
                    result.items_synced += self._push_soil(soil, bundled)
                except Exception as e:
                    logger.error(f"Error syncing soil {soil.id}: {e}")
                    result.add_error(f"Failed to sync soil {soil.id}: {_describe(e)}")

            for parameter in pending.parameters:
                if parameter.id in bundled:
                    continue
                try:
                    result.items_synced += self._push_parameter(parameter)
                except Exception as e:
                    logger.error(f"Error syncing parameter {parameter.id}: {e}")
                    result.add_error(f"Failed to sync parameter {parameter.id}: {_describe(e)}")

            self._summarize(result, "to server")

        except Exception as e:
            result.success = False
            result.message = f"Sync failed: {_describe(e)}"
            result.errors.append(_describe(e))
            self._log(SyncOutcome.ERROR, result)

        return result

    def _push_soil(self, soil: Soil, bundled: Set[str]) -> int:
        """Upload one pending soil with its first reading. Returns items synced."""
        existing = self._id_mapper.get_backend_id(soil.id)
        if existing:
            # Mapping recorded but status flip was lost; heal it
            logger.info(f"Soil {soil.id} already synced as {existing}")
            self._local_db.update_sync_status(EntityType.SOIL, soil.id, SyncStatus.SYNCED)
            return 0

        parameters = self._local_db.get_parameters_for_soil(soil.id)
        if not parameters:
            # The create endpoint needs a reading bundled with the soil
            raise SyncError(f"No parameters found for soil {soil.id}", entity_id=soil.id, phase="push")

        first = parameters[-1]  # earliest recorded; list is newest first
        bundled.add(first.id)

        response = self._gateway.create_soil(CreateSoilRequest(soil.to_request(), first.readings))

        backend_soil_id = self._echoed_id(response, "Soil_ID", "Soil", EntityType.SOIL)
        if backend_soil_id is None:
            backend_soil_id = self._recover_created_soil(soil)

        backend_parameter_id = self._echoed_id(response, "Parameter_ID", "Parameters", EntityType.PARAMETER)
        if backend_parameter_id is None:
            backend_parameter_id = self._recover_parameter(backend_soil_id, newest=False)

        self._confirm(EntityType.SOIL, soil.id, backend_soil_id)
        self._confirm(EntityType.PARAMETER, first.id, backend_parameter_id)

        logger.info(f"Successfully synced soil {soil.id} -> {backend_soil_id}")
        return 2

    def _push_parameter(self, parameter: Parameter) -> int:
        """Upload one pending reading of an uploaded soil. Returns items synced."""
        existing = self._id_mapper.get_backend_id(parameter.id)
        if existing:
            logger.info(f"Parameter {parameter.id} already synced as {existing}")
            self._local_db.update_sync_status(EntityType.PARAMETER, parameter.id, SyncStatus.SYNCED)
            return 0

        parent = self._local_db.get_soil(parameter.soil_id)
        if parent is None:
            raise SyncError(
                f"Parent soil {parameter.soil_id} not found for parameter {parameter.id}",
                entity_id=parameter.id,
                phase="push",
            )

        backend_soil_id = self._id_mapper.get_backend_id(parent.id)
        if backend_soil_id is None:
            if parent.sync_status == SyncStatus.PENDING:
                # Ordering dependency: retried once the parent is uploaded
                logger.info(
                    f"Skipping parameter {parameter.id} - parent soil {parent.id} not synced"
                )
                return 0
            raise SyncError(
                f"No backend mapping for soil {parent.id}",
                entity_id=parameter.id,
                phase="push",
            )

        response = self._gateway.add_parameter(
            UpdateParameterRequest(backend_soil_id, parameter.readings)
        )

        backend_parameter_id = self._echoed_id(response, "Parameter_ID", "Parameters", EntityType.PARAMETER)
        if backend_parameter_id is None:
            backend_parameter_id = self._recover_parameter(backend_soil_id, newest=True)

        self._confirm(EntityType.PARAMETER, parameter.id, backend_parameter_id)
        logger.info(f"Successfully synced parameter {parameter.id} -> {backend_parameter_id}")
        return 1

    @staticmethod
    def _echoed_id(
        response: Dict[str, Any],
        key: str,
        section: str,
        entity_type: EntityType,
    ) -> Optional[str]:
        """Backend id included in a create response, if the backend sent one."""
        nested = response.get(section)
        candidates = [response.get(key), nested.get(key) if isinstance(nested, dict) else None]
        for value in candidates:
            if value is not None and is_backend_id(str(value), entity_type):
                return str(value)
        return None

    def _recover_created_soil(self, soil: Soil) -> str:
        """
        Find the backend id of a soil just created, when the response did not
        include it: the most recently appended backend soil not already mapped
        to another local row, preferring one with the submitted name.
        """
        unmapped = [
            remote for remote in reversed(self._gateway.get_soils())
            if self._id_mapper.get_local_id(remote.id) is None
        ]
        if not unmapped:
            raise SyncError(
                f"Could not identify the backend id created for soil {soil.id}",
                entity_id=soil.id,
                phase="push",
            )

        for remote in unmapped:
            if remote.name == soil.name:
                return remote.id

        logger.warning(
            f"No unmapped backend soil named {soil.name!r}; "
            f"assuming latest soil {unmapped[0].id} belongs to {soil.id}"
        )
        return unmapped[0].id

    def _recover_parameter(self, backend_soil_id: str, newest: bool) -> Optional[str]:
        """
        Backend id of a reading just created under a soil: the first unmapped
        reading for a new soil, the last unmapped one for an added reading.
        """
        unmapped = [
            remote for remote in self._gateway.get_parameters(backend_soil_id)
            if self._id_mapper.get_local_id(remote.id) is None
        ]
        if not unmapped:
            return None
        return unmapped[-1].id if newest else unmapped[0].id

    def _confirm(self, entity_type: EntityType, local_id: str, backend_id: Optional[str]) -> None:
        """Record the pairing, then mark the row synced. No pairing, no status flip."""
        if not backend_id:
            raise SyncError(
                f"Could not identify the backend id created for {entity_type.value} {local_id}",
                entity_id=local_id,
                phase="push",
            )
        self._id_mapper.map_ids(local_id, backend_id, entity_type)
        self._local_db.update_sync_status(entity_type, local_id, SyncStatus.SYNCED)

    # =========================================================================
    # PULL
    # =========================================================================

    def _pull(self) -> SyncResult:
        result = SyncResult()

        try:
            remote_soils = self._gateway.get_soils()
            logger.info(f"Fetched {len(remote_soils)} soils from server")

            local_soil_ids: Dict[str, str] = {}
            for remote_soil in remote_soils:
                try:
                    local_id = self._id_mapper.adopt_backend_id(remote_soil.id, EntityType.SOIL)
                    self._local_db.store_remote_soil(local_id, remote_soil)
                    local_soil_ids[remote_soil.id] = local_id
                    result.items_synced += 1
                except Exception as e:
                    logger.error(f"Error storing soil {remote_soil.id}: {e}")
                    result.add_error(f"Failed to store soil {remote_soil.id}: {_describe(e)}")

            for remote_soil in remote_soils:
                local_soil_id = local_soil_ids.get(remote_soil.id)
                if local_soil_id is None:
                    continue
                try:
                    remote_parameters = self._gateway.get_parameters(remote_soil.id)
                except Exception as e:
                    logger.error(f"Error fetching parameters for soil {remote_soil.id}: {e}")
                    result.add_error(f"Failed to fetch parameters for soil {remote_soil.id}")
                    continue

                logger.debug(f"Fetched {len(remote_parameters)} parameters for soil {remote_soil.id}")
                for remote_parameter in remote_parameters:
                    try:
                        parent_id = self._id_mapper.get_local_id(remote_parameter.soil_id) or local_soil_id
                        local_id = self._id_mapper.adopt_backend_id(remote_parameter.id, EntityType.PARAMETER)
                        self._local_db.store_remote_parameter(local_id, parent_id, remote_parameter)
                        result.items_synced += 1
                    except Exception as e:
                        logger.error(f"Error storing parameter {remote_parameter.id}: {e}")
                        result.add_error(
                            f"Failed to store parameter {remote_parameter.id}: {_describe(e)}"
                        )

            self._summarize(result, "from server")

        except Exception as e:
            result.success = False
            result.message = f"Sync from server failed: {_describe(e)}"
            result.errors.append(_describe(e))
            self._log(SyncOutcome.ERROR, result)

        return result

    # =========================================================================
    # FULL SYNC
    # =========================================================================

    def _full(self) -> SyncResult:
        result = SyncResult()

        logger.info("Starting full sync: uploading local changes...")
        upload = self._push()
        result.merge(upload)
        if not upload.success:
            logger.warning(f"Upload phase had errors: {upload.errors}")

        logger.info("Upload complete. Downloading server data...")
        download = self._pull()
        result.merge(download)
        if not download.success:
            logger.warning(f"Download phase had errors: {download.errors}")

        if not result.errors:
            result.message = f"Full sync completed: {result.items_synced} items synced"
            self._log(SyncOutcome.SUCCESS, result)
        else:
            result.success = False
            result.message = (
                f"Full sync completed with {len(result.errors)} errors: "
                f"{result.items_synced} items synced"
            )
            self._log(SyncOutcome.PARTIAL, result)

        return result

    # =========================================================================
    # BOOKKEEPING
    # =========================================================================

    def _summarize(self, result: SyncResult, direction: str) -> None:
        if not result.errors:
            result.message = f"Successfully synced {result.items_synced} items {direction}"
            self._log(SyncOutcome.SUCCESS, result)
        else:
            result.success = False
            result.message = f"Synced {result.items_synced} items with {len(result.errors)} errors"
            self._log(SyncOutcome.PARTIAL, result)

    def _log(self, outcome: SyncOutcome, result: SyncResult) -> None:
        logger.info(f"[{outcome.value}] {result.message}")
        safe_execute(
            self._local_db.log_sync_activity,
            outcome,
            result.message,
            result.items_synced,
            error_message="Failed to write sync log",
        )

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        """Notify all registered callbacks."""
        for callback in self._callbacks:
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        last = self._state.last_result
        return {
            "is_syncing": self._state.is_syncing,
            "last_sync": self._state.last_sync.isoformat() if self._state.last_sync else None,
            "last_success": self._state.last_sync_success.isoformat() if self._state.last_sync_success else None,
            "last_result": last.to_dict() if last else None,
            "pending": self.get_pending_count(),
            "total_synced": self._state.total_synced,
            "last_duration": self._state.last_duration,
        }
