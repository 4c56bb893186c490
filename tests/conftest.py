# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
import requests
from collections import Counter
from typing import Dict, List, Set
from unittest.mock import MagicMock

from cloudtree_core.errors import IdentityMappingError, RemoteGatewayError
from cloudtree_core.offline.connection_manager import ConnectionManager
from cloudtree_core.offline.id_mapper import IdentityMapper, id_to_number, is_backend_id
from cloudtree_core.offline.local_database import LocalDatabase
from cloudtree_core.offline.models import (
    CreateSoilRequest,
    Parameter,
    ParameterRequest,
    Soil,
    SoilRequest,
    UpdateParameterRequest,
    now_iso,
)
from cloudtree_core.offline.sync_engine import SyncEngine
from cloudtree_core.offline.unified_data_service import UnifiedDataService


# =============================================================================
# FAKE BACKEND
# =============================================================================

class FakeSoilBackend:
    """
    In-memory stand-in for SoilAPIConnector.

    Ids are appended in S####/P#### format, create responses echo the
    payload without ids (as the real backend does), and failures can be
    injected on chosen calls.
    """

    def __init__(self):
        self.soils: List[Dict] = []
        self.parameters: List[Dict] = []
        self.calls: Counter = Counter()
        self.echo_ids = False
        self._failing: Dict[str, Set[int]] = {}
        self._always_failing: Set[str] = set()
        self._next_soil = 1
        self._next_parameter = 1

    # --- failure injection -------------------------------------------------

    def fail_on(self, method: str, *call_numbers: int) -> None:
        """Fail the given (1-based) calls of a method."""
        self._failing.setdefault(method, set()).update(call_numbers)

    def fail_always(self, method: str) -> None:
        self._always_failing.add(method)

    def recover(self) -> None:
        self._failing.clear()
        self._always_failing.clear()

    def _call(self, method: str) -> None:
        self.calls[method] += 1
        if method in self._always_failing or self.calls[method] in self._failing.get(method, set()):
            raise RemoteGatewayError(f"Injected failure on {method}", endpoint=method, status_code=500)

    # --- seeding -----------------------------------------------------------

    def _append_soil(self, soil: SoilRequest) -> str:
        soil_id = f"S{self._next_soil:04d}"
        self._next_soil += 1
        row = {"Soil_ID": soil_id}
        row.update(soil.to_api())
        self.soils.append(row)
        return soil_id

    def _append_parameter(self, soil_id: str, readings: ParameterRequest) -> str:
        parameter_id = f"P{self._next_parameter:04d}"
        self._next_parameter += 1
        row = {"Parameter_ID": parameter_id, "Soil_ID": soil_id, "Date_Recorded": now_iso()}
        row.update(readings.to_api())
        self.parameters.append(row)
        return parameter_id

    def seed(self, request: CreateSoilRequest) -> str:
        """Create a soil directly, as another device would have."""
        soil_id = self._append_soil(request.soil)
        self._append_parameter(soil_id, request.parameters)
        return soil_id

    def skip_ids(self, soils: int = 0, parameters: int = 0) -> None:
        self._next_soil += soils
        self._next_parameter += parameters

    # --- gateway surface ---------------------------------------------------

    def get_soils(self) -> List[Soil]:
        self._call("get_soils")
        return [Soil.from_api(row) for row in self.soils]

    def get_parameters(self, soil_id: str) -> List[Parameter]:
        self._call("get_parameters")
        return [Parameter.from_api(row) for row in self.parameters if row["Soil_ID"] == soil_id]

    def create_soil(self, request: CreateSoilRequest) -> Dict:
        self._call("create_soil")
        if any(row["Soil_Name"] == request.soil.name for row in self.soils):
            raise RemoteGatewayError(
                f"Duplicate soil {request.soil.name}", endpoint="create/soil/", status_code=409
            )
        soil_id = self._append_soil(request.soil)
        parameter_id = self._append_parameter(soil_id, request.parameters)
        response = request.to_api()
        if self.echo_ids:
            response["Soil_ID"] = soil_id
            response["Parameter_ID"] = parameter_id
        return response

    def add_parameter(self, request: UpdateParameterRequest) -> Dict:
        self._call("add_parameter")
        if not is_backend_id(request.soil_id):
            raise IdentityMappingError(f"Soil {request.soil_id} has no backend id")
        if not any(row["Soil_ID"] == request.soil_id for row in self.soils):
            raise RemoteGatewayError(f"Unknown soil {request.soil_id}", status_code=404)
        parameter_id = self._append_parameter(request.soil_id, request.parameters)
        response = {"Soil_ID": str(id_to_number(request.soil_id)), "Parameters": request.parameters.to_api()}
        if self.echo_ids:
            response["Parameter_ID"] = parameter_id
        return response

    def delete_parameter(self, parameter_id: str) -> None:
        self._call("delete_parameter")
        self.parameters = [row for row in self.parameters if row["Parameter_ID"] != parameter_id]

    def delete_soil(self, soil_id: str) -> None:
        self._call("delete_soil")
        self.soils = [row for row in self.soils if row["Soil_ID"] != soil_id]
        self.parameters = [row for row in self.parameters if row["Soil_ID"] != soil_id]

    def close(self) -> None:
        pass


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def make_readings():
    """Factory for sensor readings"""
    def _make(**overrides) -> ParameterRequest:
        values = dict(
            moisture=32.5, temperature=21.0, ec=1.2, ph=6.8,
            nitrogen=40.0, phosphorus=18.0, potassium=150.0, comments="",
        )
        values.update(overrides)
        return ParameterRequest(**values)
    return _make


@pytest.fixture
def make_soil_request(make_readings):
    """Factory for soil create requests"""
    def _make(name: str = "Plot A", latitude: float = -1.2921, longitude: float = 36.8219, **readings):
        return CreateSoilRequest(SoilRequest(name, latitude, longitude), make_readings(**readings))
    return _make


# =============================================================================
# COMPONENT FIXTURES
# =============================================================================

@pytest.fixture
def local_db(tmp_path):
    """Initialized LocalDatabase backed by a file under tmp_path"""
    db = LocalDatabase(tmp_path / "cloudtree.db")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def id_mapper(local_db):
    return IdentityMapper(local_db)


@pytest.fixture
def backend():
    return FakeSoilBackend()


@pytest.fixture
def probe_session():
    """Mock HTTP session for the connectivity probe (reachable by default)"""
    session = MagicMock()
    session.get.return_value.status_code = 200
    return session


def set_reachable(session: MagicMock, reachable: bool) -> None:
    if reachable:
        session.get.side_effect = None
        session.get.return_value.status_code = 200
    else:
        session.get.side_effect = requests.exceptions.ConnectionError("unreachable")


@pytest.fixture
def connectivity(probe_session):
    """Switch for backend reachability: connectivity(False) takes it down"""
    return lambda reachable: set_reachable(probe_session, reachable)


@pytest.fixture
def connection_manager(local_db, probe_session):
    return ConnectionManager(local_db, "http://backend.test:8000", session=probe_session)


@pytest.fixture
def sync_engine(local_db, id_mapper, backend):
    """Engine without a connectivity oracle: passes always run"""
    return SyncEngine(local_db, id_mapper, backend)


@pytest.fixture
def data_service(local_db, id_mapper, backend, connection_manager):
    return UnifiedDataService(local_db, id_mapper, backend, connection_manager)
