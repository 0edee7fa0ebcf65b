# =============================================================================
# tests/unit/test_sync_drainer.py
# Unit Tests for SyncDrainer
# =============================================================================

import pytest


def attendance_row(record_id, user_id="u1", **overrides):
    row = {
        "id": record_id,
        "user_id": user_id,
        "date": "2024-03-15",
        "check_in_time": "2024-03-15T17:00:00+00:00",
        "method": "manual",
    }
    row.update(overrides)
    return row


class TestDrainerDelivery:
    """Test successful delivery"""

    def test_drains_all_tables_and_marks_rows_synced(self, store, remote, drainer):
        store.put("attendance", attendance_row("a1"))
        store.put("nutrition_logs", {"id": "n1", "user_id": "u1", "date": "2024-03-15"})

        report = drainer.sync_now()

        assert report.applied == 2
        assert report.ok
        assert report.tables == {"attendance": 1, "nutrition_logs": 1}
        assert store.sync_queue.is_empty()
        assert store.get("attendance", "a1")["sync_status"] == "synced"
        assert remote.get("attendance", "a1")["user_id"] == "u1"

    def test_delivers_in_enqueue_order(self, store, ordering_remote, config, fake_monotonic):
        """INSERT, UPDATE, DELETE of a record reach the remote in that order"""
        from fitgym_core.offline.sync_drainer import SyncDrainer

        store.put("attendance", attendance_row("a1"))
        store.update("attendance", "a1", {"check_out_time": "2024-03-15T18:00:00+00:00"})
        store.put("attendance", attendance_row("a2"))
        store.delete("attendance", "a1")

        drainer = SyncDrainer(store, ordering_remote, config=config, monotonic=fake_monotonic)
        report = drainer.sync_now()

        assert report.conflicts == 0
        assert ordering_remote.calls == [
            ("INSERT", "attendance", "a1"),
            ("UPDATE", "attendance", "a1"),
            ("INSERT", "attendance", "a2"),
            ("DELETE", "attendance", "a1"),
        ]

    def test_batches_larger_than_batch_size(self, store, remote, drainer):
        for i in range(25):
            store.put("attendance", attendance_row(f"a{i:02d}"))

        report = drainer.sync_now()

        assert report.applied == 25
        assert [rid for _, _, rid in remote.log] == [f"a{i:02d}" for i in range(25)]

    def test_drainer_only_changes_sync_status(self, store, drainer):
        before = store.put("attendance", attendance_row("a1"))

        drainer.sync_now()

        after = store.get("attendance", "a1")
        assert {k: v for k, v in after.items() if k != "sync_status"} == \
            {k: v for k, v in before.items() if k != "sync_status"}

    def test_redelivery_after_lost_ack_is_harmless(self, store, remote, drainer):
        """An INSERT applied twice leaves a single remote row"""
        store.put("attendance", attendance_row("a1"))
        entry = store.sync_queue.peek_batch("attendance", 1)[0]
        remote.apply(entry)

        drainer.sync_now()

        assert list(remote.tables["attendance"]) == ["a1"]


class TestDrainerFailures:
    """Test transient failures and backoff"""

    def test_transient_failure_stops_table_and_keeps_entry(self, store, remote, drainer):
        from fitgym_core.errors import SyncTransientError

        store.put("attendance", attendance_row("a1"))
        store.put("attendance", attendance_row("a2"))
        remote.fail_next(SyncTransientError("timeout"))

        report = drainer.sync_now()

        assert report.failed == 1
        assert report.applied == 0
        head = store.sync_queue.peek_batch("attendance", 10)
        assert [e.record_id for e in head] == ["a1", "a2"]
        assert head[0].attempts == 1
        assert remote.log == []

    def test_backoff_skips_table_until_delay_elapsed(self, store, remote, drainer, fake_monotonic):
        from fitgym_core.errors import SyncTransientError

        store.put("attendance", attendance_row("a1"))
        remote.fail_next(SyncTransientError("timeout"))
        drainer.sync_now()

        report = drainer.sync_now()
        assert report.skipped_tables == ["attendance"]
        assert store.sync_queue.size() == 1

        fake_monotonic.advance(2.0)
        report = drainer.sync_now()
        assert report.applied == 1
        assert store.sync_queue.is_empty()

    def test_force_bypasses_backoff(self, store, remote, drainer):
        from fitgym_core.errors import SyncTransientError

        store.put("attendance", attendance_row("a1"))
        remote.fail_next(SyncTransientError("timeout"))
        drainer.sync_now()

        report = drainer.sync_now(force=True)

        assert report.applied == 1

    def test_backoff_delay_doubles_and_caps(self, drainer):
        assert drainer.backoff_delay(1) == 2.0
        assert drainer.backoff_delay(2) == 4.0
        assert drainer.backoff_delay(3) == 8.0
        assert drainer.backoff_delay(20) == 300.0

    def test_consecutive_failures_grow_the_delay(self, store, remote, drainer, fake_monotonic):
        from fitgym_core.errors import SyncTransientError

        store.put("attendance", attendance_row("a1"))
        remote.fail_next(SyncTransientError("timeout"), times=2)

        drainer.sync_now()
        fake_monotonic.advance(2.0)
        drainer.sync_now()

        fake_monotonic.advance(2.0)
        assert drainer.sync_now().skipped_tables == ["attendance"]
        fake_monotonic.advance(2.0)
        assert drainer.sync_now().applied == 1

    def test_status_lists_tables_backing_off(self, store, remote, drainer, fake_monotonic):
        from fitgym_core.errors import SyncTransientError

        store.put("attendance", attendance_row("a1"))
        remote.fail_next(SyncTransientError("timeout"))
        drainer.sync_now()

        assert drainer.get_status_display()["backing_off"] == ["attendance"]
        fake_monotonic.advance(2.0)
        assert drainer.backing_off() == []

    def test_backoff_survives_concurrent_reconnects(self, store, remote, drainer):
        import threading
        from fitgym_core.offline.connection_manager import ConnectionState, ConnectionStatus

        online = ConnectionState(status=ConnectionStatus.ONLINE)
        stop = threading.Event()
        errors = []

        def reconnect_loop():
            while not stop.is_set():
                drainer._on_connection_change(online)

        def status_loop():
            try:
                for _ in range(500):
                    drainer.get_status_display()
            except RuntimeError as e:
                errors.append(e)

        worker = threading.Thread(target=reconnect_loop)
        worker.start()
        try:
            for i in range(200):
                drainer._register_failure(f"table_{i % 20}")
            status_loop()
        finally:
            stop.set()
            worker.join(timeout=5)

        assert errors == []

    def test_unexpected_exception_is_treated_as_transient(self, store, remote, drainer):
        store.put("attendance", attendance_row("a1"))
        remote.fail_next(RuntimeError("boom"))

        report = drainer.sync_now()

        assert report.failed == 1
        assert store.sync_queue.peek_batch("attendance", 1)[0].last_error == "boom"

    def test_failure_in_one_table_does_not_block_others(self, store, remote, drainer):
        from fitgym_core.errors import SyncTransientError

        store.put("attendance", attendance_row("a1"))
        store.put("nutrition_logs", {"id": "n1", "user_id": "u1", "date": "2024-03-15"})
        remote.fail_next(SyncTransientError("timeout"))

        report = drainer.sync_now()

        assert report.failed == 1
        assert report.tables == {"nutrition_logs": 1}


class TestDrainerConflicts:
    """Test permanent rejections"""

    def test_rejection_marks_conflict_and_continues(self, store, remote, drainer):
        store.put("attendance", attendance_row("a1"))
        store.put("attendance", attendance_row("a2"))
        remote.reject_when(lambda op, table, rid, data: rid == "a1")

        report = drainer.sync_now()

        assert report.conflicts == 1
        assert report.applied == 1
        assert store.get("attendance", "a1")["sync_status"] == "conflict"
        assert store.get("attendance", "a2")["sync_status"] == "synced"
        assert [e.record_id for e in store.sync_queue.conflicts()] == ["a1"]

    def test_later_entries_of_rejected_record_are_not_sent(self, store, remote, drainer):
        store.put("attendance", attendance_row("a1"))
        store.update("attendance", "a1", {"location_verified": True})
        remote.reject_when(lambda op, table, rid, data: op == "INSERT")

        report = drainer.sync_now()

        assert report.conflicts == 1
        assert remote.log == []
        assert len(store.sync_queue.conflicts()) == 2

    def test_requeued_conflict_is_delivered(self, store, remote, drainer):
        rejecting = {"on": True}
        store.put("attendance", attendance_row("a1"))
        remote.reject_when(lambda op, table, rid, data: rejecting["on"])
        drainer.sync_now()

        rejecting["on"] = False
        store.sync_queue.requeue_conflicts()
        report = drainer.sync_now()

        assert report.applied == 1
        assert store.get("attendance", "a1")["sync_status"] == "synced"

    def test_edit_after_rejection_waits_behind_parked_insert(self, store, remote, drainer):
        rejecting = {"on": True}
        store.put("attendance", attendance_row("a1"))
        remote.reject_when(lambda op, table, rid, data: rejecting["on"])
        drainer.sync_now()

        store.update("attendance", "a1", {"check_out_time": "2024-03-15T18:30:00+00:00"})
        report = drainer.sync_now()

        assert report.applied == 0
        assert remote.log == []
        assert store.get("attendance", "a1")["sync_status"] == "conflict"
        assert [e.operation.value for e in store.sync_queue.conflicts()] == ["INSERT", "UPDATE"]

        rejecting["on"] = False
        store.sync_queue.requeue_conflicts(record_id="a1")
        drainer.sync_now()

        assert remote.log == [("INSERT", "attendance", "a1"), ("UPDATE", "attendance", "a1")]
        assert remote.get("attendance", "a1")["check_out_time"] == "2024-03-15T18:30:00+00:00"
        assert store.get("attendance", "a1")["sync_status"] == "synced"

    def test_delete_after_rejection_is_not_undone_by_requeue(self, store, remote, drainer):
        rejecting = {"on": True}
        store.put("attendance", attendance_row("a1"))
        remote.reject_when(lambda op, table, rid, data: rejecting["on"])
        drainer.sync_now()

        store.delete("attendance", "a1")
        assert drainer.sync_now().applied == 0

        rejecting["on"] = False
        store.sync_queue.requeue_conflicts()
        drainer.sync_now()

        assert remote.log == [("INSERT", "attendance", "a1"), ("DELETE", "attendance", "a1")]
        assert remote.get("attendance", "a1") is None
        assert store.sync_queue.is_empty()


class TestDrainerLifecycle:
    """Test gating, locking, stop and triggers"""

    def test_no_remote_keeps_queue(self, store, config):
        from fitgym_core.offline.sync_drainer import SyncDrainer

        store.put("attendance", attendance_row("a1"))
        drainer = SyncDrainer(store, None, config=config)

        report = drainer.sync_now()

        assert report.applied == 0
        assert report.skipped_tables == ["attendance"]
        assert store.sync_queue.size() == 1

    def test_table_already_draining_is_skipped(self, store, drainer):
        store.put("attendance", attendance_row("a1"))
        lock = drainer._table_lock("attendance")
        lock.acquire()
        try:
            report = drainer.drain_table("attendance")
        finally:
            lock.release()

        assert report.skipped_tables == ["attendance"]
        assert store.sync_queue.size() == 1

    def test_stop_leaves_unacked_entries_queued(self, store, remote, drainer):
        for i in range(3):
            store.put("attendance", attendance_row(f"a{i}"))

        original_create = remote.create

        def create_then_stop(table, record_id, data):
            original_create(table, record_id, data)
            drainer.stop()

        remote.create = create_then_stop
        report = drainer.sync_now()

        assert report.applied == 1
        assert [e.record_id for e in store.sync_queue.peek_batch("attendance", 10)] == ["a1", "a2"]

    def test_offline_connection_blocks_and_reconnect_drains(self, store, remote, config, fake_monotonic):
        from fitgym_core.offline.connection_manager import ConnectionManager
        from fitgym_core.offline.sync_drainer import SyncDrainer

        network = {"up": False}
        manager = ConnectionManager(
            internet_probe=lambda: network["up"],
            backend_probe=lambda: True,
        )
        manager.check_connection()
        drainer = SyncDrainer(store, remote, connection_manager=manager,
                              config=config, monotonic=fake_monotonic)
        store.put("attendance", attendance_row("a1"))

        assert drainer.can_sync is False
        assert drainer.sync_now().applied == 0

        network["up"] = True
        manager.check_connection()

        assert store.sync_queue.is_empty()
        assert remote.get("attendance", "a1") is not None

    def test_background_thread_drains_on_trigger(self, store, remote, config):
        import time
        from fitgym_core.offline.sync_drainer import SyncDrainer

        drainer = SyncDrainer(store, remote, config=config)
        drainer.sync_interval = 60
        store.put("attendance", attendance_row("a1"))

        drainer.start()
        try:
            drainer.trigger()
            deadline = time.time() + 5
            while not store.sync_queue.is_empty() and time.time() < deadline:
                time.sleep(0.05)
        finally:
            drainer.stop()

        assert store.sync_queue.is_empty()

    def test_callbacks_and_status(self, store, drainer):
        states = []
        drainer.register_callback(lambda s: states.append(s.is_syncing))
        store.put("attendance", attendance_row("a1"))

        drainer.sync_now()
        status = drainer.get_status_display()

        assert states == [True, False]
        assert status["pending_count"] == 0
        assert status["total_synced"] == 1
        assert status["last_success"] is not None

    def test_sync_times_come_from_store_clock(self, store, drainer, clock):
        store.put("attendance", attendance_row("a1"))

        drainer.sync_now()

        assert drainer.state.last_sync == clock.now()
        assert drainer.get_status_display()["last_success"] == clock.now().isoformat()


class TestDrainerPull:
    """Test pulling remote rows"""

    def test_pull_writes_remote_rows_as_synced(self, store, remote, drainer):
        remote.create("attendance", "r1", attendance_row("r1", updated_at="2024-03-15T10:00:00+00:00"))

        pulled = drainer.pull_from_cloud("attendance")

        assert pulled == 1
        row = store.get("attendance", "r1")
        assert row["sync_status"] == "synced"
        assert store.sync_queue.is_empty()

    def test_pull_is_incremental(self, store, remote, drainer):
        remote.create("attendance", "r1", attendance_row("r1", updated_at="2024-03-15T10:00:00+00:00"))
        drainer.pull_from_cloud("attendance")

        assert drainer.pull_from_cloud("attendance") == 0

    def test_pull_never_overwrites_pending_rows(self, store, remote, drainer):
        store.put("attendance", attendance_row("a1", method="nfc"))
        remote.create("attendance", "a1", attendance_row("a1", method="qr"))

        drainer.pull_from_cloud("attendance")

        assert store.get("attendance", "a1")["method"] == "nfc"

    def test_full_sync_pushes_then_pulls(self, store, remote, drainer):
        store.put("attendance", attendance_row("a1"))
        remote.create("nutrition_logs", "n9", {"id": "n9", "user_id": "u2", "date": "2024-03-14"})

        stats = drainer.full_sync()

        assert stats["pushed"] == 1
        assert stats["pulled"] >= 1
        assert store.get("nutrition_logs", "n9") is not None
