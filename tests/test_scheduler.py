import threading
import unittest
from unittest import mock

from shelfsync.models import AppConfig, SyncResult
from shelfsync.scheduler import SyncScheduler


def _result(trigger: str) -> SyncResult:
    return SyncResult(
        status="success",
        message="ok",
        duration_ms=1,
        created=0,
        updated=0,
        unchanged=0,
        trigger=trigger,
    )


class SyncSchedulerTests(unittest.TestCase):
    def test_runs_at_startup_and_on_manual_trigger(self) -> None:
        config_manager = mock.Mock()
        config_manager.load.return_value = AppConfig.from_dict({"sync": {"interval_seconds": 3600}})
        engine = mock.Mock()
        manual_done = threading.Event()
        triggers: list[str] = []

        def run_once(trigger: str) -> SyncResult:
            triggers.append(trigger)
            if trigger == "manual":
                manual_done.set()
            return _result(trigger)

        engine.run_once.side_effect = run_once
        scheduler = SyncScheduler(engine, config_manager)
        scheduler.start()
        self.assertTrue(scheduler.is_running())
        scheduler.trigger_manual()
        self.assertTrue(manual_done.wait(timeout=5))
        scheduler.stop()

        self.assertEqual(triggers[:2], ["startup", "manual"])
        self.assertFalse(scheduler.is_running())

    def test_survives_unreadable_config_and_crashing_run(self) -> None:
        config_manager = mock.Mock()
        config_manager.load.side_effect = ValueError("mapping values are not allowed here")
        engine = mock.Mock()
        manual_done = threading.Event()

        def run_once(trigger: str) -> SyncResult:
            if trigger == "startup":
                raise RuntimeError("state db locked")
            manual_done.set()
            return _result(trigger)

        engine.run_once.side_effect = run_once
        scheduler = SyncScheduler(engine, config_manager)
        with self.assertLogs("shelfsync.scheduler", level="ERROR") as logs:
            scheduler.start()
            scheduler.trigger_manual()
            self.assertTrue(manual_done.wait(timeout=5))
            self.assertTrue(scheduler.is_running())
            scheduler.stop()

        self.assertEqual(
            [call.kwargs["trigger"] for call in engine.run_once.call_args_list[:2]],
            ["startup", "manual"],
        )
        output = "\n".join(logs.output)
        self.assertIn("crashed", output)
        self.assertIn("Unable to load config", output)


if __name__ == "__main__":
    unittest.main()
