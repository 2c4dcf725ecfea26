"""Tests for the expired-session cleanup scheduler."""

from unittest.mock import MagicMock, patch

from core.scheduler import JOB_ID, SessionCleanupScheduler


class TestRunOnce:
    def test_purges_through_store(self, store, clock):
        store.create_session(42, "alice")
        clock.advance(hours=25)
        cleanup = SessionCleanupScheduler(store, interval_seconds=60)

        assert cleanup.run_once() == 1
        assert cleanup.stats.run_count == 1
        assert cleanup.stats.total_purged == 1
        assert cleanup.stats.last_status == "success"

    def test_failure_is_recorded_not_raised(self):
        store = MagicMock()
        store.purge_expired.side_effect = RuntimeError("boom")
        cleanup = SessionCleanupScheduler(store)

        assert cleanup.run_once() is None
        stats = cleanup.stats.to_dict()
        assert stats["error_count"] == 1
        assert stats["last_status"] == "failed"

        store.purge_expired.side_effect = None
        store.purge_expired.return_value = 0
        assert cleanup.run_once() == 0
        assert cleanup.stats.run_count == 2


class TestLifecycle:
    def test_start_registers_interval_job(self):
        cleanup = SessionCleanupScheduler(MagicMock(), interval_seconds=120)
        with patch("core.scheduler.BackgroundScheduler") as scheduler_cls:
            cleanup.start()
            scheduler = scheduler_cls.return_value

            scheduler.add_job.assert_called_once()
            assert scheduler.add_job.call_args.kwargs["id"] == JOB_ID
            scheduler.start.assert_called_once()
            assert cleanup.running

            cleanup.start()
            scheduler.start.assert_called_once()

            cleanup.stop()
            scheduler.shutdown.assert_called_once_with(wait=False)
            assert not cleanup.running

    def test_stop_without_start_is_noop(self):
        cleanup = SessionCleanupScheduler(MagicMock())
        cleanup.stop()
        assert cleanup._scheduler is None
