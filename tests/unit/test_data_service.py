# =============================================================================
# tests/unit/test_data_service.py
# Unit Tests for OfflineDataService wiring and status
# =============================================================================

import pytest


@pytest.fixture
def service(config, clock, remote):
    from fitgym_core.offline import ConnectionManager, OfflineDataService

    data_service = OfflineDataService(
        config=config,
        clock=clock,
        remote=remote,
        connection_manager=ConnectionManager(
            internet_probe=lambda: True,
            backend_probe=lambda: True,
        ),
    )
    yield data_service
    data_service.shutdown()


class TestOfflineDataService:
    """Test lazy wiring and status"""

    def test_components_share_one_store(self, service):
        assert service.workouts._store is service.store
        assert service.drainer.queue is service.store.sync_queue
        assert service.record_engine is service.record_engine

    def test_local_only_config_has_no_remote(self, config, clock):
        from fitgym_core.offline import OfflineDataService

        local_only = OfflineDataService(config=config, clock=clock)
        try:
            assert local_only.remote is None
            assert local_only.is_online is False
            assert local_only.sync_now().error_code == "OFFLINE"
        finally:
            local_only.shutdown()

    def test_start_and_shutdown(self, service):
        service.start(monitor_connection=False)
        service.start(monitor_connection=False)

        assert service.is_online
        assert service.connection_status == "online"

        service.shutdown()
        assert service.drainer._sync_thread.is_alive() is False

    def test_status_callbacks_relay_connectivity(self, service):
        seen = []
        service.register_status_callback(seen.append)
        service.start(monitor_connection=False)

        service.force_offline()

        assert seen == [True, False]
        assert service.get_status()["connection"]["forced_offline"] is True

    def test_failing_status_callback_does_not_block_others(self, service):
        seen = []

        def broken(is_online):
            raise RuntimeError("widget gone")

        service.register_status_callback(broken)
        service.register_status_callback(seen.append)
        service.start(monitor_connection=False)

        assert seen == [True]

    def test_shutdown_closes_store_when_a_step_fails(self, service, monkeypatch):
        closed = []
        service.start(monitor_connection=False)

        def broken_stop(timeout=10.0):
            raise RuntimeError("thread stuck")

        monkeypatch.setattr(service.drainer, "stop", broken_stop)
        monkeypatch.setattr(service.store, "close", lambda: closed.append(True))

        service.shutdown()

        assert closed == [True]

    def test_pending_count_and_status(self, service):
        service.attendance.check_in("u1")

        status = service.get_status()

        assert service.pending_sync_count == 1
        assert status["has_remote"] is True
        assert status["queue"]["by_operation"] == {"INSERT": 1, "UPDATE": 0, "DELETE": 0}

    def test_sync_now_delivers(self, service, remote):
        service.connection_manager.check_connection()
        visit = service.attendance.check_in("u1")

        result = service.sync_now()

        assert result.data.applied == 1
        assert remote.get("attendance", visit.id) is not None
        assert service.last_sync is not None


class TestDataServiceSingleton:
    """Test the process-wide accessor"""

    def test_same_instance_until_reset(self, config):
        from fitgym_core.offline import get_data_service, reset_data_service

        try:
            first = get_data_service(config)
            assert get_data_service() is first
        finally:
            reset_data_service()

        try:
            assert get_data_service(config) is not first
        finally:
            reset_data_service()
