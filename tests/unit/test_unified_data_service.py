# =============================================================================
# tests/unit/test_unified_data_service.py
# Unit Tests for UnifiedDataService
# =============================================================================

from unittest.mock import MagicMock

import pytest

from cloudtree_core.api.base_connector import APIConfig
from cloudtree_core.api.soil_connector import SoilAPIConnector
from cloudtree_core.errors import LocalStoreError
from cloudtree_core.offline.models import (
    EntityType,
    Parameter,
    Soil,
    SyncStatus,
    UpdateParameterRequest,
)
from cloudtree_core.offline.unified_data_service import UnifiedDataService


class TestCreates:
    """Test the remote-first create state machine"""

    def test_online_soil_goes_to_backend_only(self, data_service, backend, local_db, make_soil_request):
        result = data_service.save_soil_data(make_soil_request("Plot A"))

        assert result is None
        assert [row["Soil_Name"] for row in backend.soils] == ["Plot A"]
        assert local_db.count("Soils") == 0

    def test_offline_soil_stored_locally_pending(self, data_service, backend, local_db,
                                                 connectivity, make_soil_request):
        connectivity(False)

        soil_id = data_service.save_soil_data(make_soil_request("Plot A"))

        assert soil_id == "L_S00001"
        assert local_db.get_soil(soil_id).sync_status == SyncStatus.PENDING
        assert backend.calls["create_soil"] == 0

    def test_remote_failure_falls_back_to_local(self, data_service, backend, local_db, make_soil_request):
        backend.fail_always("create_soil")

        soil_id = data_service.save_soil_data(make_soil_request("Plot A"))

        assert soil_id == "L_S00001"
        assert local_db.get_pending_items().total == 2

    def test_forced_offline_never_calls_backend(self, data_service, backend, probe_session, make_soil_request):
        data_service.set_offline_mode(True)

        data_service.save_soil_data(make_soil_request("Plot A"))

        assert data_service.get_offline_mode() is True
        assert backend.calls["create_soil"] == 0
        probe_session.get.assert_not_called()

    def test_parameter_for_synced_soil_uses_backend_id(self, data_service, backend, id_mapper,
                                                       local_db, make_soil_request, make_readings):
        backend_soil = backend.seed(make_soil_request("Plot A"))
        local_db.upsert_soil(Soil("L_S00001", "Plot A", 0.0, 0.0), SyncStatus.SYNCED)
        id_mapper.map_ids("L_S00001", backend_soil, EntityType.SOIL)

        result = data_service.save_parameter_data(UpdateParameterRequest("L_S00001", make_readings()))

        assert result is None
        assert [row["Soil_ID"] for row in backend.parameters] == [backend_soil, backend_soil]

    def test_parameter_for_unsynced_soil_falls_back(self, data_service, backend, local_db,
                                                    connectivity, make_soil_request, make_readings):
        connectivity(False)
        soil_id = data_service.save_soil_data(make_soil_request("Plot A"))
        connectivity(True)

        parameter_id = data_service.save_parameter_data(UpdateParameterRequest(soil_id, make_readings()))

        assert parameter_id == "L_P00002"
        assert backend.calls["add_parameter"] == 0
        assert local_db.get_parameter(parameter_id).soil_id == soil_id

    def test_parameter_fallback_translates_backend_soil_id(self, data_service, backend, id_mapper,
                                                           local_db, make_readings):
        local_db.upsert_soil(Soil("L_S00001", "Plot A", 0.0, 0.0), SyncStatus.SYNCED)
        id_mapper.map_ids("L_S00001", "S0001", EntityType.SOIL)
        backend.fail_always("add_parameter")

        parameter_id = data_service.save_parameter_data(UpdateParameterRequest("S0001", make_readings()))

        assert local_db.get_parameter(parameter_id).soil_id == "L_S00001"

    def test_local_store_failure_propagates(self, data_service, connectivity, make_readings):
        """A reading for a soil the device has never seen cannot be stored"""
        connectivity(False)
        with pytest.raises(LocalStoreError):
            data_service.save_parameter_data(UpdateParameterRequest("L_S00042", make_readings()))

    def test_reading_for_listed_soil_survives_failed_add(self, data_service, backend, local_db,
                                                         id_mapper, sync_engine, make_soil_request,
                                                         make_readings):
        """A soil listed online accepts a local reading when the backend add fails"""
        backend.seed(make_soil_request("Plot B"))
        data_service.get_soils()
        backend.fail_always("add_parameter")

        parameter_id = data_service.save_parameter_data(UpdateParameterRequest("S0001", make_readings()))

        parameter = local_db.get_parameter(parameter_id)
        assert parameter.soil_id == id_mapper.get_local_id("S0001")
        assert parameter.sync_status == SyncStatus.PENDING

        backend.recover()
        assert sync_engine.sync_to_server().success
        assert id_mapper.get_backend_id(parameter_id) == "P0002"


class TestReads:
    """Test read branching and fallback"""

    def test_online_reads_backend(self, data_service, backend, make_soil_request):
        backend.seed(make_soil_request("Remote plot"))
        assert [s.name for s in data_service.get_soils()] == ["Remote plot"]

    def test_read_falls_back_to_local(self, data_service, backend, connectivity, make_soil_request):
        connectivity(False)
        data_service.save_soil_data(make_soil_request("Local plot"))
        connectivity(True)
        backend.fail_always("get_soils")

        assert [s.name for s in data_service.get_soils()] == ["Local plot"]

    def test_malformed_backend_record_falls_back(self, local_db, id_mapper, connection_manager,
                                                  make_soil_request):
        session = MagicMock()
        session.request.return_value.status_code = 200
        session.request.return_value.json.return_value = [
            {"Soil_ID": "S0001", "Soil_Name": "Plot A", "Loc_Latitude": None, "Loc_Longitude": 2.5}
        ]
        gateway = SoilAPIConnector(
            APIConfig(api_name="soil_backend", base_url="http://backend.test:8000"), session=session
        )
        service = UnifiedDataService(local_db, id_mapper, gateway, connection_manager)
        local_db.save_local_soil(make_soil_request("Local plot"))

        assert [s.name for s in service.get_soils()] == ["Local plot"]
        session.request.assert_called_once()

    def test_online_read_mirrors_soils_locally(self, data_service, backend, local_db, id_mapper,
                                               make_soil_request):
        backend.seed(make_soil_request("Plot B"))

        data_service.get_soils()
        data_service.get_soils()

        local_id = id_mapper.get_local_id("S0001")
        assert local_db.count("Soils") == 1
        assert local_db.get_soil(local_id).name == "Plot B"
        assert local_db.get_soil(local_id).sync_status == SyncStatus.SYNCED
        assert local_db.get_pending_items().total == 0

    def test_online_read_keeps_conflict_soil(self, data_service, backend, local_db, id_mapper,
                                             make_soil_request):
        backend.seed(make_soil_request("Plot B"))
        local_db.upsert_soil(Soil("L_S00001", "Plot B (edited)", 0.0, 0.0), SyncStatus.CONFLICT)
        id_mapper.map_ids("L_S00001", "S0001", EntityType.SOIL)

        data_service.get_soils()

        assert local_db.get_soil("L_S00001").name == "Plot B (edited)"

    def test_parameters_of_unsynced_soil_read_locally(self, data_service, backend, connectivity,
                                                      make_soil_request):
        connectivity(False)
        soil_id = data_service.save_soil_data(make_soil_request("Plot A"))
        connectivity(True)

        parameters = data_service.get_parameters(soil_id)

        assert len(parameters) == 1
        assert backend.calls["get_parameters"] == 0

    def test_parameters_of_synced_soil_read_remotely(self, data_service, backend, id_mapper,
                                                     make_soil_request):
        backend_soil = backend.seed(make_soil_request("Plot A"))
        id_mapper.map_ids("L_S00001", backend_soil, EntityType.SOIL)

        parameters = data_service.get_parameters("L_S00001")

        assert [p.soil_id for p in parameters] == [backend_soil]


class TestUpdates:
    """Test update_parameter"""

    def _local_soil(self, data_service, connectivity, make_soil_request):
        connectivity(False)
        soil_id = data_service.save_soil_data(make_soil_request("Plot A"))
        return soil_id, "L_P00001"

    def test_offline_update_of_unsynced_row_stays_pending(self, data_service, local_db, connectivity,
                                                          make_soil_request, make_readings):
        soil_id, parameter_id = self._local_soil(data_service, connectivity, make_soil_request)

        updated = data_service.update_parameter(
            parameter_id, UpdateParameterRequest(soil_id, make_readings(ph=5.9))
        )

        parameter = local_db.get_parameter(parameter_id)
        assert updated
        assert parameter.readings.ph == 5.9
        assert parameter.sync_status == SyncStatus.PENDING

    def test_offline_update_of_uploaded_row_is_conflict(self, data_service, local_db, id_mapper,
                                                        connectivity, make_soil_request, make_readings):
        soil_id, parameter_id = self._local_soil(data_service, connectivity, make_soil_request)
        id_mapper.map_ids(parameter_id, "P0001", EntityType.PARAMETER)

        data_service.update_parameter(parameter_id, UpdateParameterRequest(soil_id, make_readings()))

        assert local_db.get_parameter(parameter_id).sync_status == SyncStatus.CONFLICT
        assert local_db.get_pending_items().parameters == []

    def test_online_update_posts_new_reading(self, data_service, backend, id_mapper, make_soil_request,
                                             make_readings):
        backend_soil = backend.seed(make_soil_request("Plot A"))
        id_mapper.map_ids("L_S00001", backend_soil, EntityType.SOIL)

        updated = data_service.update_parameter(
            "P0001", UpdateParameterRequest("L_S00001", make_readings(ph=7.4))
        )

        assert updated
        assert backend.parameters[-1]["Ph"] == 7.4

    def test_update_of_unknown_row_returns_false(self, data_service, connectivity, make_readings):
        connectivity(False)
        assert not data_service.update_parameter(
            "L_P00077", UpdateParameterRequest("L_S00001", make_readings())
        )


class TestDeletes:
    """Test deletes on both sides"""

    def _synced_soil(self, local_db, id_mapper, backend, make_soil_request):
        backend_soil = backend.seed(make_soil_request("Plot A"))
        local_db.upsert_soil(Soil("L_S00001", "Plot A", 0.0, 0.0), SyncStatus.SYNCED)
        local_db.upsert_parameter(
            Parameter("L_P00001", "L_S00001", make_soil_request().parameters), SyncStatus.SYNCED
        )
        id_mapper.map_ids("L_S00001", backend_soil, EntityType.SOIL)
        id_mapper.map_ids("L_P00001", "P0001", EntityType.PARAMETER)
        return backend_soil

    def test_online_delete_soil_removes_both_and_unmaps(self, data_service, local_db, id_mapper,
                                                       backend, make_soil_request):
        self._synced_soil(local_db, id_mapper, backend, make_soil_request)

        assert data_service.delete_soil("L_S00001")

        assert backend.soils == [] and backend.parameters == []
        assert local_db.count("Soils") == 0
        assert local_db.count("Parameters") == 0
        assert id_mapper.get_all_mappings() == []

    def test_remote_delete_failure_still_deletes_locally(self, data_service, local_db, id_mapper,
                                                         backend, make_soil_request):
        self._synced_soil(local_db, id_mapper, backend, make_soil_request)
        backend.fail_always("delete_parameter")

        assert data_service.delete_parameter("L_P00001")

        assert local_db.get_parameter("L_P00001") is None
        assert len(backend.parameters) == 1
        assert id_mapper.get_backend_id("L_P00001") == "P0001"

    def test_offline_delete_is_local_only(self, data_service, local_db, id_mapper, backend,
                                          connectivity, make_soil_request):
        self._synced_soil(local_db, id_mapper, backend, make_soil_request)
        connectivity(False)

        data_service.delete_parameter("L_P00001")

        assert backend.calls["delete_parameter"] == 0
        assert local_db.get_parameter("L_P00001") is None

    def test_delete_by_backend_id(self, data_service, local_db, id_mapper, backend, make_soil_request):
        self._synced_soil(local_db, id_mapper, backend, make_soil_request)

        data_service.delete_parameter("P0001")

        assert backend.parameters == []
        assert local_db.get_parameter("L_P00001") is None
        assert id_mapper.get_local_id("P0001") is None


class TestStatus:
    """Test status snapshot"""

    def test_get_status(self, data_service, connectivity, make_soil_request):
        connectivity(False)
        data_service.save_soil_data(make_soil_request("Plot A"))

        status = data_service.get_status()

        assert status["online"] is False
        assert status["local"]["soils"] == 1
        assert status["pending"] == {"soils": 1, "parameters": 1}
        assert status["connection"]["status"] == "offline"
