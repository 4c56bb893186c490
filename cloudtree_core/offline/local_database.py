# =============================================================================
# cloudtree_core/offline/local_database.py
# Local SQLite Database for Offline Operations
# =============================================================================
"""
LocalDatabase - SQLite-based local storage that mirrors the soil backend.

Features:
- Explicit initialize()/close() lifecycle (initialization failure is fatal)
- Idempotent upserts keyed by id, so sync retries can resubmit safely
- Local id minting (L_S#####, L_P#####)
- Sync log and persisted app settings
- DataFrame export (pandas)

All mutations are serialized through one re-entrant lock: a single writer
is assumed, and local id minting is only safe under that assumption.
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Union
import logging

import pandas as pd

from cloudtree_core.errors import LocalStoreError
from cloudtree_core.offline.id_mapper import format_local_id
from cloudtree_core.offline.models import (
    CreateSoilRequest,
    EntityType,
    Parameter,
    ParameterRequest,
    PendingItems,
    Soil,
    SyncLogEntry,
    SyncOutcome,
    SyncStatus,
    UpdateParameterRequest,
    now_iso,
)

logger = logging.getLogger(__name__)


class LocalDatabase:
    """
    Local SQLite database for offline data storage.

    Usage:
        db = LocalDatabase(Path("local_data/cloudtree.db"))
        db.initialize()          # raises LocalStoreError on failure
        soil_id = db.save_local_soil(request)
        db.close()
    """

    # Default database location
    DEFAULT_DB_PATH = Path("local_data") / "cloudtree.db"

    # Schema definitions mirroring the backend tables
    SCHEMA = {
        "Soils": """
            CREATE TABLE IF NOT EXISTS Soils (
                Soil_ID TEXT PRIMARY KEY,
                Soil_Name TEXT NOT NULL,
                Loc_Latitude REAL NOT NULL,
                Loc_Longitude REAL NOT NULL,
                sync_status TEXT DEFAULT 'pending',
                last_modified TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
        "Parameters": """
            CREATE TABLE IF NOT EXISTS Parameters (
                Parameter_ID TEXT PRIMARY KEY,
                Soil_ID TEXT NOT NULL,
                Hum REAL NOT NULL,
                Temp REAL NOT NULL,
                Ec REAL NOT NULL,
                Ph REAL NOT NULL,
                Nitrogen REAL NOT NULL,
                Phosphorus REAL NOT NULL,
                Potassium REAL NOT NULL,
                Comments TEXT,
                Date_Recorded TEXT NOT NULL,
                sync_status TEXT DEFAULT 'pending',
                last_modified TEXT DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (Soil_ID) REFERENCES Soils(Soil_ID) ON DELETE CASCADE
            )
        """,
        "SyncLog": """
            CREATE TABLE IF NOT EXISTS SyncLog (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sync_date TEXT NOT NULL,
                status TEXT NOT NULL,
                message TEXT,
                items_synced INTEGER DEFAULT 0
            )
        """,
        "ID_Mappings": """
            CREATE TABLE IF NOT EXISTS ID_Mappings (
                local_id TEXT PRIMARY KEY,
                backend_id TEXT UNIQUE,
                entity_type TEXT NOT NULL CHECK(entity_type IN ('soil', 'parameter')),
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                synced_at TEXT
            )
        """,
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
    }

    INDEXES = [
        "CREATE INDEX IF NOT EXISTS idx_backend_id ON ID_Mappings(backend_id)",
        "CREATE INDEX IF NOT EXISTS idx_entity_type ON ID_Mappings(entity_type)",
        "CREATE INDEX IF NOT EXISTS idx_parameters_soil ON Parameters(Soil_ID)",
    ]

    # Tables wiped by clear(); app_settings holds user preferences and survives
    DATA_TABLES = ["Parameters", "Soils", "SyncLog", "ID_Mappings"]

    # entity type -> (table, id column)
    _ENTITY_TABLES = {
        EntityType.SOIL: ("Soils", "Soil_ID"),
        EntityType.PARAMETER: ("Parameters", "Parameter_ID"),
    }

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        """
        Args:
            db_path: Path to SQLite database file (":memory:" is accepted)
        """
        self.db_path = db_path if db_path is not None else self.DEFAULT_DB_PATH
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    @property
    def is_initialized(self) -> bool:
        return self._connection is not None

    def _is_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    def _get_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise LocalStoreError("Database not initialized", db_path=str(self.db_path))
        return self._connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for a serialized write transaction."""
        with self._lock:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise LocalStoreError(
                    f"Local database write failed: {e}", db_path=str(self.db_path)
                ) from e
            except Exception:
                conn.rollback()
                raise

    def initialize(self) -> None:
        """
        Open the database and create tables and indexes if absent.

        Raises:
            LocalStoreError: if the storage engine cannot be opened. There is
                no degraded mode; the caller is expected to alert the user.
        """
        if self._connection is not None:
            return

        try:
            if not self._is_memory():
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")

            for table_name, schema in self.SCHEMA.items():
                conn.execute(schema)
                logger.debug(f"Created/verified table: {table_name}")
            for index in self.INDEXES:
                conn.execute(index)
            conn.commit()
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Error initializing local database at {self.db_path}: {e}")
            raise LocalStoreError(
                f"Failed to initialize local database: {e}", db_path=str(self.db_path)
            ) from e

        self._connection = conn
        logger.info(f"Local database initialized at: {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
                logger.info("Local database closed")

    # =========================================================================
    # RAW ACCESS
    # =========================================================================

    def query(self, sql: str, params: Optional[List] = None) -> List[sqlite3.Row]:
        """Execute a raw SQL query."""
        with self._lock:
            try:
                cursor = self._get_connection().execute(sql, params or [])
                return cursor.fetchall()
            except sqlite3.Error as e:
                raise LocalStoreError(
                    f"Local database query failed: {e}", db_path=str(self.db_path)
                ) from e

    def execute(self, sql: str, params: Optional[List] = None) -> int:
        """Execute a raw SQL statement."""
        with self.transaction() as conn:
            cursor = conn.execute(sql, params or [])
            return cursor.rowcount

    def count(self, table: str) -> int:
        """Row count of one of the known tables."""
        self._check_table(table)
        return self.query(f"SELECT COUNT(*) AS count FROM {table}")[0]["count"]

    def _check_table(self, table: str) -> None:
        if table not in self.SCHEMA:
            raise ValueError(f"Unknown table: {table}")

    # =========================================================================
    # LOCAL IDS
    # =========================================================================

    def generate_local_id(self, entity_type: EntityType) -> str:
        """
        Produce the next local id: row count + 1, zero-padded to 5 digits.

        If that number is already taken (rows were deleted, or an old mapping
        still reserves it) the number is bumped until it is free. Callers must
        insert the row before minting the next id.
        """
        table, _ = self._ENTITY_TABLES[entity_type]
        with self._lock:
            number = self.count(table) + 1
            candidate = format_local_id(entity_type, number)
            while self._local_id_taken(entity_type, candidate):
                number += 1
                candidate = format_local_id(entity_type, number)
            return candidate

    def _local_id_taken(self, entity_type: EntityType, local_id: str) -> bool:
        if self.entity_exists(entity_type, local_id):
            return True
        rows = self.query("SELECT 1 FROM ID_Mappings WHERE local_id = ?", [local_id])
        return bool(rows)

    def entity_exists(self, entity_type: EntityType, entity_id: str) -> bool:
        table, column = self._ENTITY_TABLES[entity_type]
        rows = self.query(f"SELECT 1 FROM {table} WHERE {column} = ?", [entity_id])
        return bool(rows)

    # =========================================================================
    # UPSERTS
    # =========================================================================

    def upsert_soil(self, soil: Soil, sync_status: SyncStatus = SyncStatus.PENDING) -> None:
        """Insert or update a soil keyed by id; stamps last_modified."""
        with self.transaction() as conn:
            self._write_soil(conn, soil, sync_status)

    def upsert_parameter(
        self,
        parameter: Parameter,
        sync_status: SyncStatus = SyncStatus.PENDING,
    ) -> None:
        """Insert or update a parameter keyed by id; stamps last_modified."""
        with self.transaction() as conn:
            self._write_parameter(conn, parameter, sync_status)

    def _write_soil(self, conn: sqlite3.Connection, soil: Soil, sync_status: SyncStatus) -> None:
        # ON CONFLICT ... DO UPDATE keeps the row (INSERT OR REPLACE would
        # delete it and cascade to its parameters)
        conn.execute(
            """
            INSERT INTO Soils (Soil_ID, Soil_Name, Loc_Latitude, Loc_Longitude, sync_status, last_modified)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(Soil_ID) DO UPDATE SET
                Soil_Name = excluded.Soil_Name,
                Loc_Latitude = excluded.Loc_Latitude,
                Loc_Longitude = excluded.Loc_Longitude,
                sync_status = excluded.sync_status,
                last_modified = excluded.last_modified
            """,
            [soil.id, soil.name, soil.latitude, soil.longitude, sync_status.value, now_iso()],
        )

    def _write_parameter(
        self,
        conn: sqlite3.Connection,
        parameter: Parameter,
        sync_status: SyncStatus,
    ) -> None:
        r = parameter.readings
        conn.execute(
            """
            INSERT INTO Parameters (Parameter_ID, Soil_ID, Hum, Temp, Ec, Ph, Nitrogen, Phosphorus,
                                    Potassium, Comments, Date_Recorded, sync_status, last_modified)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(Parameter_ID) DO UPDATE SET
                Soil_ID = excluded.Soil_ID,
                Hum = excluded.Hum,
                Temp = excluded.Temp,
                Ec = excluded.Ec,
                Ph = excluded.Ph,
                Nitrogen = excluded.Nitrogen,
                Phosphorus = excluded.Phosphorus,
                Potassium = excluded.Potassium,
                Comments = excluded.Comments,
                Date_Recorded = excluded.Date_Recorded,
                sync_status = excluded.sync_status,
                last_modified = excluded.last_modified
            """,
            [
                parameter.id, parameter.soil_id,
                r.moisture, r.temperature, r.ec, r.ph,
                r.nitrogen, r.phosphorus, r.potassium,
                r.comments, parameter.date_recorded,
                sync_status.value, now_iso(),
            ],
        )

    # =========================================================================
    # LOCAL-FIRST WRITES (Data Service fallback path)
    # =========================================================================

    def save_local_soil(self, request: CreateSoilRequest, local_id: Optional[str] = None) -> str:
        """
        Save a new soil and its bundled first reading, both pending.

        Returns:
            The soil's local id (L_S#####)
        """
        with self.transaction() as conn:
            soil_id = local_id or self.generate_local_id(EntityType.SOIL)
            self._write_soil(
                conn,
                Soil(soil_id, request.soil.name, request.soil.latitude, request.soil.longitude),
                SyncStatus.PENDING,
            )
            parameter_id = self.generate_local_id(EntityType.PARAMETER)
            self._write_parameter(
                conn,
                Parameter(parameter_id, soil_id, request.parameters),
                SyncStatus.PENDING,
            )

        logger.info(f"Saved soil {soil_id} with parameter {parameter_id} to local database")
        return soil_id

    def save_local_parameter(
        self,
        request: UpdateParameterRequest,
        local_id: Optional[str] = None,
    ) -> str:
        """
        Save a new pending reading for a soil that exists locally.

        Returns:
            The parameter's local id (L_P#####)
        """
        with self.transaction() as conn:
            parameter_id = local_id or self.generate_local_id(EntityType.PARAMETER)
            self._write_parameter(
                conn,
                Parameter(parameter_id, request.soil_id, request.parameters),
                SyncStatus.PENDING,
            )

        logger.info(f"Saved parameter {parameter_id} to local database")
        return parameter_id

    def update_local_parameter(
        self,
        parameter_id: str,
        readings: ParameterRequest,
        sync_status: SyncStatus = SyncStatus.PENDING,
    ) -> bool:
        """Overwrite a parameter's readings. Returns False if the row is missing."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE Parameters
                SET Hum = ?, Temp = ?, Ec = ?, Ph = ?, Nitrogen = ?, Phosphorus = ?,
                    Potassium = ?, Comments = ?, sync_status = ?, last_modified = ?
                WHERE Parameter_ID = ?
                """,
                [
                    readings.moisture, readings.temperature, readings.ec, readings.ph,
                    readings.nitrogen, readings.phosphorus, readings.potassium,
                    readings.comments, sync_status.value, now_iso(), parameter_id,
                ],
            )
            updated = cursor.rowcount > 0

        if updated:
            logger.info(f"Updated parameter {parameter_id} in local database ({sync_status.value})")
        return updated

    def store_remote_soil(self, local_id: str, remote: Soil) -> bool:
        """
        Mirror a backend soil under its local id as `synced`.

        A `conflict` row holds an edit the backend has not seen and is kept.
        Returns False when the row was skipped.
        """
        with self._lock:
            existing = self.get_soil(local_id)
            if existing is not None and existing.sync_status == SyncStatus.CONFLICT:
                logger.warning(f"Soil {local_id} is in conflict; keeping local copy")
                return False
            self.upsert_soil(
                Soil(local_id, remote.name, remote.latitude, remote.longitude),
                sync_status=SyncStatus.SYNCED,
            )
        return True

    def store_remote_parameter(self, local_id: str, local_soil_id: str, remote: Parameter) -> bool:
        """Mirror a backend reading under its local id; same conflict rule as soils."""
        with self._lock:
            existing = self.get_parameter(local_id)
            if existing is not None and existing.sync_status == SyncStatus.CONFLICT:
                logger.warning(f"Parameter {local_id} is in conflict; keeping local copy")
                return False
            self.upsert_parameter(
                Parameter(local_id, local_soil_id, remote.readings, remote.date_recorded),
                sync_status=SyncStatus.SYNCED,
            )
        return True

    def update_sync_status(
        self,
        entity_type: EntityType,
        entity_id: str,
        status: SyncStatus,
    ) -> bool:
        """Set the sync status of one soil or parameter row."""
        table, column = self._ENTITY_TABLES[entity_type]
        return self.execute(
            f"UPDATE {table} SET sync_status = ?, last_modified = ? WHERE {column} = ?",
            [status.value, now_iso(), entity_id],
        ) > 0

    # =========================================================================
    # READS
    # =========================================================================

    def get_soils(self) -> List[Soil]:
        """All soils, most recently modified first."""
        rows = self.query("SELECT * FROM Soils ORDER BY last_modified DESC, rowid DESC")
        return [Soil.from_row(row) for row in rows]

    def get_soil(self, soil_id: str) -> Optional[Soil]:
        rows = self.query("SELECT * FROM Soils WHERE Soil_ID = ?", [soil_id])
        return Soil.from_row(rows[0]) if rows else None

    def get_parameters_for_soil(self, soil_id: str) -> List[Parameter]:
        """Readings of one soil, most recently recorded first."""
        rows = self.query(
            "SELECT * FROM Parameters WHERE Soil_ID = ? ORDER BY Date_Recorded DESC, rowid DESC",
            [soil_id],
        )
        return [Parameter.from_row(row) for row in rows]

    def get_parameter(self, parameter_id: str) -> Optional[Parameter]:
        rows = self.query("SELECT * FROM Parameters WHERE Parameter_ID = ?", [parameter_id])
        return Parameter.from_row(rows[0]) if rows else None

    def get_pending_items(self) -> PendingItems:
        """Rows with sync_status = 'pending', in creation order."""
        soil_rows = self.query(
            "SELECT * FROM Soils WHERE sync_status = ? ORDER BY rowid",
            [SyncStatus.PENDING.value],
        )
        parameter_rows = self.query(
            "SELECT * FROM Parameters WHERE sync_status = ? ORDER BY rowid",
            [SyncStatus.PENDING.value],
        )
        return PendingItems(
            soils=[Soil.from_row(row) for row in soil_rows],
            parameters=[Parameter.from_row(row) for row in parameter_rows],
        )

    # =========================================================================
    # DELETES
    # =========================================================================

    def delete_parameter(self, parameter_id: str) -> bool:
        deleted = self.execute("DELETE FROM Parameters WHERE Parameter_ID = ?", [parameter_id]) > 0
        if deleted:
            logger.info(f"Deleted parameter {parameter_id} from local database")
        return deleted

    def delete_soil(self, soil_id: str) -> bool:
        """Delete a soil and all of its parameters."""
        with self.transaction() as conn:
            # The FK cascades too; the explicit delete keeps this correct even
            # on a connection opened without PRAGMA foreign_keys
            conn.execute("DELETE FROM Parameters WHERE Soil_ID = ?", [soil_id])
            cursor = conn.execute("DELETE FROM Soils WHERE Soil_ID = ?", [soil_id])
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted soil {soil_id} and its parameters from local database")
        return deleted

    def clear(self) -> None:
        """Wipe soils, parameters, sync log and id mappings (user reset only)."""
        with self.transaction() as conn:
            for table in self.DATA_TABLES:
                conn.execute(f"DELETE FROM {table}")
        logger.warning("Local database cleared")

    # =========================================================================
    # SYNC LOG
    # =========================================================================

    def log_sync_activity(
        self,
        status: SyncOutcome,
        message: str,
        items_synced: int = 0,
    ) -> None:
        """Append an entry to the sync log."""
        self.execute(
            "INSERT INTO SyncLog (sync_date, status, message, items_synced) VALUES (?, ?, ?, ?)",
            [now_iso(), status.value, message, items_synced],
        )

    def get_sync_history(self, limit: int = 10) -> List[SyncLogEntry]:
        """Most recent sync log entries first."""
        rows = self.query(
            "SELECT * FROM SyncLog ORDER BY sync_date DESC, id DESC LIMIT ?",
            [limit],
        )
        return [SyncLogEntry.from_row(row) for row in rows]

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(
        self,
        table: str,
        where: Optional[str] = None,
        params: Optional[List] = None
    ) -> pd.DataFrame:
        """
        Load a table into a pandas DataFrame.

        Args:
            table: Table name
            where: Optional WHERE clause
            params: Parameters for WHERE clause

        Returns:
            DataFrame with table data
        """
        self._check_table(table)
        query = f"SELECT * FROM {table}"
        if where:
            query += f" WHERE {where}"

        with self._lock:
            return pd.read_sql_query(query, self._get_connection(), params=params)

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an app setting."""
        result = self.query(
            "SELECT value FROM app_settings WHERE key = ?",
            [key]
        )
        if result:
            try:
                return json.loads(result[0]["value"])
            except json.JSONDecodeError:
                return result[0]["value"]
        return default

    def set_setting(self, key: str, value: Any) -> None:
        """Set an app setting."""
        value_str = json.dumps(value) if not isinstance(value, str) else value
        self.execute(
            """
            INSERT OR REPLACE INTO app_settings (key, value, updated_at)
            VALUES (?, ?, ?)
            """,
            [key, value_str, now_iso()]
        )
