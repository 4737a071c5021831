from unittest.mock import MagicMock

import pytest

from feedrank.data_pipeline.scheduler import TaskScheduler


def test_run_now_executes_registered_task():
    scheduler = TaskScheduler()
    func = MagicMock()
    scheduler.add_interval_task("job", func, 3600)
    assert scheduler.run_now("job") is True
    func.assert_called_once()
    assert scheduler.tasks["job"].runs == 1


def test_failures_are_counted_not_raised():
    scheduler = TaskScheduler()
    scheduler.add_interval_task("bad", MagicMock(side_effect=RuntimeError("boom")), 3600)
    assert scheduler.run_now("bad") is False
    status = scheduler.get_status()["tasks"][0]
    assert status["failures"] == 1
    assert status["last_error"] == "boom"


def test_unknown_task():
    with pytest.raises(KeyError):
        TaskScheduler().run_now("missing")


def test_start_and_shutdown():
    scheduler = TaskScheduler()
    scheduler.add_interval_task("job", MagicMock(), 3600)
    scheduler.start()
    try:
        assert scheduler.running
        assert scheduler.get_status()["tasks"][0]["next_run"] is not None
    finally:
        scheduler.shutdown(wait=False)
    assert not scheduler.running
