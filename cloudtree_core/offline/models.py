# =============================================================================
# cloudtree_core/offline/models.py
# Domain Types for Soils, Parameters, Mappings and Sync Results
# =============================================================================
"""
Typed records shared by the local store, the REST gateway and the sync engine.

Field names on the wire follow the backend's JSON (Soil_ID, Hum, Ec, ...);
the Python attributes use snake_case and `to_api()` / `from_api()` translate.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SyncStatus(Enum):
    """Sync state of a local row."""
    SYNCED = "synced"
    PENDING = "pending"
    CONFLICT = "conflict"   # Reserved: local edit of an already-uploaded row


class EntityType(Enum):
    """Kinds of entity that carry ids."""
    SOIL = "soil"
    PARAMETER = "parameter"


class SyncOutcome(Enum):
    """Outcome recorded in the sync log."""
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


def now_iso() -> str:
    """Timestamp format used for every stored date."""
    return datetime.now().isoformat()


# =============================================================================
# REQUEST PAYLOADS
# =============================================================================

@dataclass
class SoilRequest:
    """Soil fields accepted by the create endpoint."""
    name: str
    latitude: float
    longitude: float

    def to_api(self) -> Dict[str, Any]:
        return {
            "Soil_Name": self.name,
            "Loc_Latitude": self.latitude,
            "Loc_Longitude": self.longitude,
        }

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> SoilRequest:
        return cls(
            name=data["Soil_Name"],
            latitude=float(data["Loc_Latitude"]),
            longitude=float(data["Loc_Longitude"]),
        )


@dataclass
class ParameterRequest:
    """One set of sensor readings."""
    moisture: float
    temperature: float
    ec: float
    ph: float
    nitrogen: float
    phosphorus: float
    potassium: float
    comments: str = ""

    def to_api(self) -> Dict[str, Any]:
        return {
            "Hum": self.moisture,
            "Temp": self.temperature,
            "Ec": self.ec,
            "Ph": self.ph,
            "Nitrogen": self.nitrogen,
            "Phosphorus": self.phosphorus,
            "Potassium": self.potassium,
            "Comments": self.comments,
        }

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> ParameterRequest:
        return cls(
            moisture=float(data["Hum"]),
            temperature=float(data["Temp"]),
            ec=float(data["Ec"]),
            ph=float(data["Ph"]),
            nitrogen=float(data["Nitrogen"]),
            phosphorus=float(data["Phosphorus"]),
            potassium=float(data["Potassium"]),
            comments=data.get("Comments") or "",
        )


@dataclass
class CreateSoilRequest:
    """Body of POST /create/soil/: a soil bundled with its first reading."""
    soil: SoilRequest
    parameters: ParameterRequest

    def to_api(self) -> Dict[str, Any]:
        return {
            "Soil": self.soil.to_api(),
            "Parameters": self.parameters.to_api(),
        }

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> CreateSoilRequest:
        return cls(
            soil=SoilRequest.from_api(data["Soil"]),
            parameters=ParameterRequest.from_api(data["Parameters"]),
        )


@dataclass
class UpdateParameterRequest:
    """
    Body of POST /add/parameter/.

    `soil_id` is whatever the caller knows (local or backend id); the
    gateway only ever sends the numeric string form.
    """
    soil_id: str
    parameters: ParameterRequest

    def to_api(self) -> Dict[str, Any]:
        return {
            "Soil_ID": self.soil_id,
            "Parameters": self.parameters.to_api(),
        }

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> UpdateParameterRequest:
        return cls(
            soil_id=str(data["Soil_ID"]),
            parameters=ParameterRequest.from_api(data["Parameters"]),
        )


# =============================================================================
# RECORDS
# =============================================================================

@dataclass
class Soil:
    """A planting site."""
    id: str
    name: str
    latitude: float
    longitude: float
    sync_status: SyncStatus = SyncStatus.PENDING
    last_modified: Optional[str] = None

    def to_api(self) -> Dict[str, Any]:
        return {
            "Soil_ID": self.id,
            "Soil_Name": self.name,
            "Loc_Latitude": self.latitude,
            "Loc_Longitude": self.longitude,
        }

    def to_request(self) -> SoilRequest:
        return SoilRequest(self.name, self.latitude, self.longitude)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> Soil:
        return cls(
            id=str(data["Soil_ID"]),
            name=data["Soil_Name"],
            latitude=float(data["Loc_Latitude"]),
            longitude=float(data["Loc_Longitude"]),
            sync_status=SyncStatus.SYNCED,
        )

    @classmethod
    def from_row(cls, row) -> Soil:
        return cls(
            id=row["Soil_ID"],
            name=row["Soil_Name"],
            latitude=row["Loc_Latitude"],
            longitude=row["Loc_Longitude"],
            sync_status=SyncStatus(row["sync_status"]),
            last_modified=row["last_modified"],
        )


@dataclass
class Parameter:
    """One sensor reading tied to a soil."""
    id: str
    soil_id: str
    readings: ParameterRequest
    date_recorded: str = field(default_factory=now_iso)
    sync_status: SyncStatus = SyncStatus.PENDING
    last_modified: Optional[str] = None

    def to_api(self) -> Dict[str, Any]:
        data = {
            "Parameter_ID": self.id,
            "Soil_ID": self.soil_id,
            "Date_Recorded": self.date_recorded,
        }
        data.update(self.readings.to_api())
        return data

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> Parameter:
        return cls(
            id=str(data["Parameter_ID"]),
            soil_id=str(data["Soil_ID"]),
            readings=ParameterRequest.from_api(data),
            date_recorded=data.get("Date_Recorded") or now_iso(),
            sync_status=SyncStatus.SYNCED,
        )

    @classmethod
    def from_row(cls, row) -> Parameter:
        return cls(
            id=row["Parameter_ID"],
            soil_id=row["Soil_ID"],
            readings=ParameterRequest(
                moisture=row["Hum"],
                temperature=row["Temp"],
                ec=row["Ec"],
                ph=row["Ph"],
                nitrogen=row["Nitrogen"],
                phosphorus=row["Phosphorus"],
                potassium=row["Potassium"],
                comments=row["Comments"] or "",
            ),
            date_recorded=row["Date_Recorded"],
            sync_status=SyncStatus(row["sync_status"]),
            last_modified=row["last_modified"],
        )


@dataclass
class IdMapping:
    """Association between a local id and a backend id."""
    local_id: str
    backend_id: str
    entity_type: EntityType
    created_at: Optional[str] = None
    synced_at: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> IdMapping:
        return cls(
            local_id=row["local_id"],
            backend_id=row["backend_id"],
            entity_type=EntityType(row["entity_type"]),
            created_at=row["created_at"],
            synced_at=row["synced_at"],
        )


@dataclass
class SyncLogEntry:
    """Append-only audit record of a sync pass."""
    id: int
    sync_date: str
    status: SyncOutcome
    message: str
    items_synced: int = 0

    @classmethod
    def from_row(cls, row) -> SyncLogEntry:
        return cls(
            id=row["id"],
            sync_date=row["sync_date"],
            status=SyncOutcome(row["status"]),
            message=row["message"] or "",
            items_synced=row["items_synced"] or 0,
        )


@dataclass
class PendingItems:
    """Rows still waiting to be pushed, partitioned by entity type."""
    soils: List[Soil] = field(default_factory=list)
    parameters: List[Parameter] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.soils) + len(self.parameters)


@dataclass
class SyncResult:
    """Summary of one push, pull or full sync pass."""
    success: bool = True
    message: str = ""
    items_synced: int = 0
    errors: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.success = False

    def merge(self, other: SyncResult) -> None:
        """Fold another phase's counts and errors into this result."""
        self.items_synced += other.items_synced
        self.errors.extend(other.errors)
        if not other.success:
            self.success = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "itemsSynced": self.items_synced,
            "errors": list(self.errors),
        }
