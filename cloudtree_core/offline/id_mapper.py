# =============================================================================
# cloudtree_core/offline/id_mapper.py
# Local <-> Backend Identifier Translation
# =============================================================================
"""
IdentityMapper - join table between locally-minted and backend-assigned ids.

Two disjoint id spaces exist:
- local ids, minted on the device:      L_S00001, L_P00001
- backend ids, assigned by the server:  S0001,    P0001

The backend's REST paths and bodies take only the numeric suffix of a
backend id (S0042 -> 42). Every id-format rule lives in this module.
"""

from __future__ import annotations
import math
import re
from typing import TYPE_CHECKING, List, Optional, Union
import logging

from cloudtree_core.offline.models import EntityType, IdMapping, now_iso

if TYPE_CHECKING:
    from cloudtree_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)


BACKEND_ID_PATTERN = re.compile(r"^[SP](\d+)$", re.IGNORECASE)
LOCAL_ID_PATTERN = re.compile(r"^L_([SP])(\d+)$")

LOCAL_PREFIXES = {
    EntityType.SOIL: "L_S",
    EntityType.PARAMETER: "L_P",
}

_TYPE_LETTERS = {
    EntityType.SOIL: "S",
    EntityType.PARAMETER: "P",
}


def id_to_number(entity_id: str) -> Union[int, float]:
    """
    Numeric suffix of a backend id, as the REST API expects it.

    Returns:
        int for a backend id ("S0042" -> 42), math.nan otherwise
    """
    match = BACKEND_ID_PATTERN.match(entity_id or "")
    return int(match.group(1)) if match else math.nan


def format_local_id(entity_type: EntityType, number: int) -> str:
    """format_local_id(EntityType.SOIL, 7) -> 'L_S00007'"""
    return f"{LOCAL_PREFIXES[entity_type]}{number:05d}"


def is_local_id(entity_id: str, entity_type: Optional[EntityType] = None) -> bool:
    match = LOCAL_ID_PATTERN.match(entity_id or "")
    if not match:
        return False
    return entity_type is None or match.group(1) == _TYPE_LETTERS[entity_type]


def is_backend_id(entity_id: str, entity_type: Optional[EntityType] = None) -> bool:
    if not BACKEND_ID_PATTERN.match(entity_id or ""):
        return False
    return entity_type is None or entity_id[0].upper() == _TYPE_LETTERS[entity_type]


class IdentityMapper:
    """
    Mapping table abstraction over ID_Mappings rows.

    A local id must never be mapped to two backend ids (or the reverse).
    map_ids() enforces this deterministically with last-write-wins on both
    columns; hitting that path means a caller bug, and it is logged as such.
    """

    def __init__(self, local_db: LocalDatabase):
        self._local_db = local_db

    def map_ids(self, local_id: str, backend_id: str, entity_type: EntityType) -> None:
        """Create or refresh the local <-> backend pairing (idempotent)."""
        current_backend = self.get_backend_id(local_id)
        current_local = self.get_local_id(backend_id)

        if current_backend == backend_id and current_local == local_id:
            self._local_db.execute(
                "UPDATE ID_Mappings SET synced_at = ? WHERE local_id = ?",
                [now_iso(), local_id],
            )
            logger.debug(f"ID Mapping confirmed: {local_id} <-> {backend_id}")
            return

        if current_backend is not None or current_local is not None:
            logger.warning(
                f"Overwriting ID mapping for {local_id} <-> {backend_id} "
                f"(was {local_id} -> {current_backend}, {backend_id} -> {current_local})"
            )

        # INSERT OR REPLACE drops any row conflicting on either unique column
        self._local_db.execute(
            """
            INSERT OR REPLACE INTO ID_Mappings (local_id, backend_id, entity_type, created_at, synced_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            [local_id, backend_id, entity_type.value, now_iso(), now_iso()],
        )
        logger.info(f"ID Mapping: {local_id} <-> {backend_id} ({entity_type.value})")

    def get_backend_id(self, local_id: str) -> Optional[str]:
        rows = self._local_db.query(
            "SELECT backend_id FROM ID_Mappings WHERE local_id = ?", [local_id]
        )
        return rows[0]["backend_id"] if rows else None

    def get_local_id(self, backend_id: str) -> Optional[str]:
        rows = self._local_db.query(
            "SELECT local_id FROM ID_Mappings WHERE backend_id = ?", [backend_id]
        )
        return rows[0]["local_id"] if rows else None

    def is_synced(self, local_id: str) -> bool:
        """True iff the local id has a backend mapping."""
        return self.get_backend_id(local_id) is not None

    def unmap(self, local_id: str) -> bool:
        """Drop the mapping of a local id whose backend row is gone."""
        removed = self._local_db.execute(
            "DELETE FROM ID_Mappings WHERE local_id = ?", [local_id]
        ) > 0
        if removed:
            logger.info(f"ID Mapping removed for {local_id}")
        return removed

    def adopt_backend_id(self, backend_id: str, entity_type: EntityType) -> str:
        """
        Local id for a row arriving from the backend, with the pairing recorded.

        Resolution order: the existing mapping, then an old row keyed by the
        backend id itself, then a freshly minted local id.
        """
        local_id = self.get_local_id(backend_id)
        if local_id is None:
            if self._local_db.entity_exists(entity_type, backend_id):
                local_id = backend_id
            else:
                local_id = self._local_db.generate_local_id(entity_type)
        self.map_ids(local_id, backend_id, entity_type)
        return local_id

    def get_all_mappings(self, entity_type: Optional[EntityType] = None) -> List[IdMapping]:
        if entity_type is None:
            rows = self._local_db.query("SELECT * FROM ID_Mappings ORDER BY created_at")
        else:
            rows = self._local_db.query(
                "SELECT * FROM ID_Mappings WHERE entity_type = ? ORDER BY created_at",
                [entity_type.value],
            )
        return [IdMapping.from_row(row) for row in rows]

    # =========================================================================
    # RESOLUTION HELPERS (either id space in, one id space out)
    # =========================================================================

    def resolve_local_id(self, entity_id: str, entity_type: EntityType) -> Optional[str]:
        """
        Local row id for an id from either space, or None if nothing local.

        Old rows may be keyed directly by a backend id; those resolve to
        themselves.
        """
        if is_local_id(entity_id):
            return entity_id
        mapped = self.get_local_id(entity_id)
        if mapped is not None:
            return mapped
        if self._local_db.entity_exists(entity_type, entity_id):
            return entity_id
        return None

    def resolve_backend_id(self, entity_id: str) -> Optional[str]:
        """Backend id for an id from either space, or None if never uploaded."""
        mapped = self.get_backend_id(entity_id)
        if mapped is not None:
            return mapped
        if is_backend_id(entity_id):
            return entity_id
        return None
