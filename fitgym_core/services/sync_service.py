# =============================================================================
# fitgym_core/services/sync_service.py
# Sync Operations Exposed to the UI
# =============================================================================

from __future__ import annotations
from typing import Optional

from fitgym_core.offline.sync_drainer import SyncDrainer
from fitgym_core.services.base_service import BaseService, ServiceResult


class SyncService(BaseService):
    """
    UI-facing sync actions. Never raises; failures come back as ServiceResult.

    Usage:
        result = sync_service.sync_now()
        if result:
            print(f"{result.data.applied} changes delivered")
    """

    def __init__(self, drainer: SyncDrainer):
        super().__init__()
        self._drainer = drainer

    def sync_now(self, force: bool = False) -> ServiceResult:
        """Drain the queue now; data is the DrainReport."""
        if not self._drainer.can_sync:
            return ServiceResult.fail("Sync unavailable: offline or no remote configured", error_code="OFFLINE")
        return self.safe_execute("Syncing local changes", self._drainer.sync_now, force=force)

    def full_sync(self) -> ServiceResult:
        """Push then pull; data is the statistics dict."""
        if not self._drainer.can_sync:
            return ServiceResult.fail("Sync unavailable: offline or no remote configured", error_code="OFFLINE")
        return self.safe_execute("Full sync", self._drainer.full_sync)

    def resolve_conflicts(
        self,
        table: Optional[str] = None,
        record_id: Optional[str] = None,
    ) -> ServiceResult:
        """Requeue conflicted changes after manual resolution; data is the count."""
        result = self.safe_execute(
            "Requeueing conflicts",
            self._drainer.queue.requeue_conflicts,
            table=table,
            record_id=record_id,
        )
        if result and result.data:
            self._drainer.trigger()
        return result
