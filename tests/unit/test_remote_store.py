# =============================================================================
# tests/unit/test_remote_store.py
# Unit Tests for remote store adapters
# =============================================================================

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest


def api_error(code, message="rejected"):
    from postgrest.exceptions import APIError

    return APIError({"message": message, "code": code, "hint": None, "details": None})


class TestSupabaseRemoteStore:
    """Test calls made against the Supabase client"""

    def test_create_upserts_on_id(self, mock_supabase):
        from fitgym_core.offline.remote_store import SupabaseRemoteStore

        remote = SupabaseRemoteStore(mock_supabase)
        remote.create("attendance", "a1", {"user_id": "u1"})

        mock_supabase.table.assert_called_with("attendance")
        mock_supabase.table.return_value.upsert.assert_called_once_with(
            {"user_id": "u1", "id": "a1"}, on_conflict="id"
        )

    def test_update_sends_changes_filtered_by_id(self, mock_supabase):
        from fitgym_core.offline.remote_store import SupabaseRemoteStore

        remote = SupabaseRemoteStore(mock_supabase)
        remote.update("attendance", "a1", {"id": "a1", "check_out_time": "2024-03-15T18:00:00+00:00"})

        table = mock_supabase.table.return_value
        table.update.assert_called_once_with({"check_out_time": "2024-03-15T18:00:00+00:00"})
        table.update.return_value.eq.assert_called_once_with("id", "a1")

    def test_empty_update_is_skipped(self, mock_supabase):
        from fitgym_core.offline.remote_store import SupabaseRemoteStore

        SupabaseRemoteStore(mock_supabase).update("attendance", "a1", {"id": "a1"})

        mock_supabase.table.return_value.update.assert_not_called()

    def test_delete_filters_by_id(self, mock_supabase):
        from fitgym_core.offline.remote_store import SupabaseRemoteStore

        SupabaseRemoteStore(mock_supabase).delete("attendance", "a1")

        mock_supabase.table.return_value.delete.return_value.eq.assert_called_once_with("id", "a1")

    def test_table_mapping(self, mock_supabase):
        from fitgym_core.offline.remote_store import SupabaseRemoteStore

        remote = SupabaseRemoteStore(mock_supabase, table_mapping={"attendance": "gym_attendance"})
        remote.delete("attendance", "a1")

        mock_supabase.table.assert_called_with("gym_attendance")

    def test_apply_dispatches_by_operation(self, mock_supabase):
        from fitgym_core.models import SyncOperation, SyncQueueEntry
        from fitgym_core.offline.remote_store import SupabaseRemoteStore

        remote = SupabaseRemoteStore(mock_supabase)
        entry = SyncQueueEntry(
            id=1,
            table="attendance",
            record_id="a1",
            operation=SyncOperation.DELETE,
            payload={"id": "a1"},
            enqueued_at=datetime(2024, 3, 15, tzinfo=timezone.utc),
        )

        remote.apply(entry)

        mock_supabase.table.return_value.delete.assert_called_once()
        mock_supabase.table.return_value.upsert.assert_not_called()

    def test_fetch_paginates(self, mock_supabase):
        from fitgym_core.offline.remote_store import SupabaseRemoteStore

        remote = SupabaseRemoteStore(mock_supabase)
        remote.PAGE_SIZE = 2
        ranged = mock_supabase.table.return_value.select.return_value.order.return_value.range
        ranged.return_value.execute.side_effect = [
            MagicMock(data=[{"id": "a"}, {"id": "b"}]),
            MagicMock(data=[{"id": "c"}]),
        ]

        rows = remote.fetch("attendance")

        assert [r["id"] for r in rows] == ["a", "b", "c"]
        assert [c.args for c in ranged.call_args_list] == [(0, 1), (2, 3)]

    def test_fetch_since_filters_on_updated_at(self, mock_supabase):
        from fitgym_core.offline.remote_store import SupabaseRemoteStore

        select = mock_supabase.table.return_value.select.return_value
        select.gte.return_value.order.return_value.range.return_value.execute.return_value.data = []
        since = datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc)

        assert SupabaseRemoteStore(mock_supabase).fetch("attendance", since=since) == []
        select.gte.assert_called_once_with("updated_at", since.isoformat())


class TestSupabaseErrorClassification:
    """Test the retry/reject split"""

    @pytest.mark.parametrize("code", ["23502", "23505", "22P02", "42703", "PGRST204", "409"])
    def test_rejected_codes(self, mock_supabase, code):
        from fitgym_core.errors import SyncRejectedError
        from fitgym_core.offline.remote_store import SupabaseRemoteStore

        mock_supabase.table.return_value.upsert.return_value.execute.side_effect = api_error(code)

        with pytest.raises(SyncRejectedError) as exc_info:
            SupabaseRemoteStore(mock_supabase).create("attendance", "a1", {"user_id": "u1"})

        assert exc_info.value.details["remote_code"] == code
        assert exc_info.value.recoverable is False

    @pytest.mark.parametrize("code", ["08006", "57014", "PGRST000", "503"])
    def test_transient_codes(self, mock_supabase, code):
        from fitgym_core.errors import SyncTransientError
        from fitgym_core.offline.remote_store import SupabaseRemoteStore

        mock_supabase.table.return_value.upsert.return_value.execute.side_effect = api_error(code)

        with pytest.raises(SyncTransientError):
            SupabaseRemoteStore(mock_supabase).create("attendance", "a1", {"user_id": "u1"})

    def test_network_errors_are_transient(self, mock_supabase):
        from fitgym_core.errors import SyncTransientError
        from fitgym_core.offline.remote_store import SupabaseRemoteStore

        mock_supabase.table.return_value.delete.return_value.eq.return_value.execute.side_effect = \
            ConnectionError("connection reset")

        with pytest.raises(SyncTransientError) as exc_info:
            SupabaseRemoteStore(mock_supabase).delete("attendance", "a1")

        assert isinstance(exc_info.value.__cause__, ConnectionError)


class TestInMemoryRemoteStore:
    """Test the dict-backed store"""

    def test_create_is_idempotent(self, remote):
        remote.create("attendance", "a1", {"user_id": "u1"})
        remote.create("attendance", "a1", {"user_id": "u1"})

        assert list(remote.tables["attendance"]) == ["a1"]

    def test_update_of_missing_row_is_rejected(self, remote):
        from fitgym_core.errors import SyncRejectedError

        with pytest.raises(SyncRejectedError):
            remote.update("attendance", "ghost", {"user_id": "u1"})

    def test_delete_of_missing_row_is_fine(self, remote):
        remote.delete("attendance", "ghost")

        assert remote.log == [("DELETE", "attendance", "ghost")]

    def test_stored_rows_are_copies(self, remote):
        data = {"user_id": "u1", "tags": ["a"]}
        remote.create("attendance", "a1", data)
        data["tags"].append("b")

        assert remote.get("attendance", "a1")["tags"] == ["a"]

    def test_fail_next_counts_down(self, remote):
        from fitgym_core.errors import SyncTransientError

        remote.fail_next(SyncTransientError("timeout"), times=2)

        for _ in range(2):
            with pytest.raises(SyncTransientError):
                remote.create("attendance", "a1", {})
        remote.create("attendance", "a1", {})

        assert remote.get("attendance", "a1") is not None

    def test_fetch_since(self, remote):
        remote.create("attendance", "old", {"updated_at": "2024-03-14T10:00:00+00:00"})
        remote.create("attendance", "new", {"updated_at": "2024-03-15T10:00:00+00:00"})

        rows = remote.fetch("attendance", since=datetime(2024, 3, 15, tzinfo=timezone.utc))

        assert [r["id"] for r in rows] == ["new"]


class TestCreateRemoteStore:
    """Test the factory"""

    def test_no_credentials_means_local_only(self, config):
        from fitgym_core.offline.remote_store import create_remote_store

        assert create_remote_store(config) is None

    def test_credentials_build_supabase_store(self, tmp_path, monkeypatch, mock_supabase):
        from fitgym_core.config import AppConfig
        from fitgym_core.offline import remote_store

        factory = MagicMock(return_value=mock_supabase)
        monkeypatch.setattr(remote_store, "create_client", factory)
        config = AppConfig(
            db_path=tmp_path / "fitgym.db",
            supabase_url="https://example.supabase.co",
            supabase_key="anon-key",
        )

        store = remote_store.create_remote_store(config)

        assert isinstance(store, remote_store.SupabaseRemoteStore)
        factory.assert_called_once_with("https://example.supabase.co", "anon-key")
