"""
Auto-sync scheduler: debounce, single-flight and failure bookkeeping.
Timers are replaced with a fake so nothing sleeps or spawns threads.
"""

import unittest

from flask import Flask

from stockledger.services.sync_scheduler import AutoSyncScheduler


class FakeTimer:
    created = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


class AutoSyncSchedulerTests(unittest.TestCase):

    def setUp(self):
        FakeTimer.created = []
        self.app = Flask(__name__)
        self.app.config["SYNC_DEBOUNCE_SECONDS"] = 30
        self.passes = []
        self.scheduler = AutoSyncScheduler(
            self.app,
            run_pass=self.passes.append,
            timer_factory=FakeTimer,
        )

    def test_debounce_uses_config(self):
        self.assertEqual(self.scheduler.debounce_seconds, 30)
        self.scheduler.notify({"sales"})
        self.assertEqual(FakeTimer.created[0].interval, 30)
        self.assertTrue(FakeTimer.created[0].daemon)

    def test_changes_inside_window_share_one_pass(self):
        self.assertTrue(self.scheduler.notify({"sales"}))
        self.assertTrue(self.scheduler.notify({"colors", "stock_out_history"}))

        first, second = FakeTimer.created
        self.assertTrue(first.cancelled)
        self.assertFalse(second.cancelled)

        first.fire()
        self.assertEqual(self.passes, [])
        second.fire()
        self.assertEqual(self.passes, [{"sales", "colors", "stock_out_history"}])
        self.assertEqual(self.scheduler.passes, 1)
        self.assertIsNotNone(self.scheduler.last_sync_at)

    def test_notify_during_pass_is_ignored(self):
        results = []

        def nested_pass(tables):
            results.append(scheduler.running)
            results.append(scheduler.notify({"sales"}))

        scheduler = AutoSyncScheduler(self.app, run_pass=nested_pass, timer_factory=FakeTimer)
        scheduler.run_now()

        self.assertEqual(results, [True, False])
        self.assertFalse(scheduler.running)
        self.assertEqual(FakeTimer.created, [])

    def test_failed_pass_records_error(self):
        calls = []

        def flaky_pass(tables):
            calls.append(tables)
            if len(calls) == 1:
                raise RuntimeError("mirror unreachable")

        scheduler = AutoSyncScheduler(self.app, run_pass=flaky_pass, timer_factory=FakeTimer)
        with self.assertLogs(self.app.logger, level="ERROR"):
            scheduler.run_now()
        self.assertEqual(scheduler.last_error, "mirror unreachable")

        scheduler.run_now()
        self.assertIsNone(scheduler.last_error)
        self.assertEqual(scheduler.passes, 2)

    def test_run_now_cancels_pending_timer(self):
        self.scheduler.notify({"sales"})
        self.scheduler.run_now()

        self.assertTrue(FakeTimer.created[0].cancelled)
        self.assertEqual(self.passes, [{"sales"}])

    def test_shutdown_cancels_pending_timer(self):
        self.scheduler.notify({"sales"})
        self.scheduler.shutdown()

        FakeTimer.created[0].fire()
        self.assertEqual(self.passes, [])


if __name__ == "__main__":
    unittest.main()
