# =============================================================================
# tests/unit/test_connection_manager.py
# Unit Tests for ConnectionManager
# =============================================================================

import requests

from cloudtree_core.offline.connection_manager import ConnectionManager, ConnectionStatus


class TestReachability:
    """Test the backend probe"""

    def test_reachable_backend(self, connection_manager, probe_session):
        assert connection_manager.check_connectivity()

        probe_session.get.assert_called_once_with("http://backend.test:8000/soils", timeout=3)
        assert connection_manager.status == ConnectionStatus.ONLINE

    def test_client_error_still_counts_as_reachable(self, connection_manager, probe_session):
        probe_session.get.return_value.status_code = 404
        assert connection_manager.check_connectivity()

    def test_server_error_is_unreachable(self, connection_manager, probe_session):
        probe_session.get.return_value.status_code = 503

        assert not connection_manager.check_connectivity()
        assert connection_manager.status == ConnectionStatus.OFFLINE
        assert connection_manager.state.error_message == "Backend returned 503"

    def test_timeout_is_unreachable(self, connection_manager, probe_session):
        probe_session.get.side_effect = requests.exceptions.Timeout()

        assert not connection_manager.check_connectivity()
        assert connection_manager.state.consecutive_failures == 1

    def test_network_error_is_unreachable(self, connection_manager, connectivity):
        connectivity(False)
        assert not connection_manager.check_connectivity()

    def test_failures_reset_on_success(self, connection_manager, connectivity):
        connectivity(False)
        connection_manager.check_connectivity()
        connection_manager.check_connectivity()
        connectivity(True)
        connection_manager.check_connectivity()

        assert connection_manager.state.consecutive_failures == 0
        assert connection_manager.state.last_online is not None


class TestOfflineMode:
    """Test the forced offline preference"""

    def test_offline_mode_defaults_off(self, connection_manager):
        assert connection_manager.get_offline_mode() is False

    def test_offline_mode_persists_in_store(self, connection_manager, local_db, probe_session):
        connection_manager.set_offline_mode(True)

        other = ConnectionManager(local_db, "http://backend.test:8000", session=probe_session)
        assert other.get_offline_mode() is True

    def test_forced_offline_skips_probe(self, connection_manager, probe_session):
        connection_manager.set_offline_mode(True)

        assert not connection_manager.is_effective_online()
        probe_session.get.assert_not_called()
        assert connection_manager.status == ConnectionStatus.FORCED_OFFLINE

    def test_effective_online_requires_reachability(self, connection_manager, connectivity):
        assert connection_manager.is_effective_online()
        connectivity(False)
        assert not connection_manager.is_effective_online()

    def test_disabling_offline_mode_resets_status(self, connection_manager):
        connection_manager.set_offline_mode(True)
        connection_manager.set_offline_mode(False)

        assert connection_manager.status == ConnectionStatus.UNKNOWN
        assert connection_manager.is_effective_online()


class TestCallbacks:
    """Test status-change callbacks"""

    def test_callback_fires_on_change_only(self, connection_manager):
        seen = []
        connection_manager.register_callback(lambda state: seen.append(state.status))

        connection_manager.check_connectivity()
        connection_manager.check_connectivity()

        assert seen == [ConnectionStatus.ONLINE]

    def test_failing_callback_does_not_break_probe(self, connection_manager):
        def broken(state):
            raise RuntimeError("boom")

        connection_manager.register_callback(broken)
        assert connection_manager.check_connectivity()

    def test_unregister_callback(self, connection_manager):
        seen = []
        callback = seen.append
        connection_manager.register_callback(callback)
        connection_manager.unregister_callback(callback)

        connection_manager.check_connectivity()
        assert seen == []

    def test_status_display(self, connection_manager):
        connection_manager.check_connectivity()
        display = connection_manager.get_status_display()

        assert display["status"] == "online"
        assert display["offline_mode"] is False
        assert display["backend"] == "http://backend.test:8000"
