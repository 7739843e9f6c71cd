"""
Tests for reliability — lock waiter, stale-lock reclaimer, retrying executor.
"""

import pytest
from conftest import FakeProbe, FakeRunner, FakeSleep

from jetson_setup.adapters.mock import MockAdapter
from jetson_setup.adapters.registry import AdapterRegistry
from jetson_setup.core.models.action import Action
from jetson_setup.core.persistence.run_log import RunLog
from jetson_setup.core.reliability.locks import FuserLockProbe, LockWaiter
from jetson_setup.core.reliability.reclaim import ReclaimStatus, StaleLockReclaimer
from jetson_setup.core.reliability.retry import (
    ActionExhaustedError,
    RetryingExecutor,
    backoff_delays,
)

FRONTEND = "/var/lib/dpkg/lock-frontend"
LISTS = "/var/lib/apt/lists/lock"


# ── Lock Waiter ──────────────────────────────────────────────────────


class TestFuserLockProbe:
    def test_held_when_fuser_finds_holder(self):
        runner = FakeRunner()
        runner.respond(["fuser"], returncode=0, stdout="1234")
        assert FuserLockProbe(runner).is_held(FRONTEND)
        assert runner.calls == [["fuser", FRONTEND]]
        assert runner.elevated == [True]

    def test_free_when_no_holder(self):
        assert not FuserLockProbe(FakeRunner()).is_held(FRONTEND)

    def test_missing_fuser_reads_free(self):
        runner = FakeRunner()
        runner.respond(["fuser"], returncode=127)
        assert not FuserLockProbe(runner).is_held(FRONTEND)

    def test_dry_run_reads_free(self):
        assert not FuserLockProbe(FakeRunner(dry_run=True)).is_held(FRONTEND)


class TestLockWaiter:
    def test_free_immediately(self, run_log: RunLog, fake_sleep: FakeSleep):
        waiter = LockWaiter(FakeProbe(), run_log, sleep=fake_sleep)
        assert waiter.wait_until_free([FRONTEND, LISTS]) == 0
        assert run_log.entries == []
        assert fake_sleep.calls == []

    def test_one_entry_per_busy_poll(self, run_log: RunLog, fake_sleep: FakeSleep):
        probe = FakeProbe(busy={FRONTEND: 3})
        waiter = LockWaiter(probe, run_log, poll_interval=3.0, sleep=fake_sleep)

        assert waiter.wait_until_free([FRONTEND, LISTS]) == 3
        waiting = [m for m in run_log.messages() if m.startswith("Waiting for apt/dpkg lock")]
        assert len(waiting) == 3
        assert fake_sleep.calls == [3.0, 3.0, 3.0]

    def test_entry_names_held_resources(self, run_log: RunLog, fake_sleep: FakeSleep):
        probe = FakeProbe(busy={LISTS: 1})
        LockWaiter(probe, run_log, sleep=fake_sleep).wait_until_free([FRONTEND, LISTS])
        assert run_log.messages() == [f"Waiting for apt/dpkg lock ({LISTS})..."]

    def test_waits_for_every_resource(self, run_log: RunLog, fake_sleep: FakeSleep):
        probe = FakeProbe(busy={FRONTEND: 1, LISTS: 2})
        assert LockWaiter(probe, run_log, sleep=fake_sleep).wait_until_free([FRONTEND, LISTS]) == 2

    def test_duplicate_resources_probed_once(self, run_log: RunLog, fake_sleep: FakeSleep):
        probe = FakeProbe()
        LockWaiter(probe, run_log, sleep=fake_sleep).wait_until_free([FRONTEND, FRONTEND])
        assert probe.calls == [FRONTEND]


# ── Stale-Lock Reclaimer ─────────────────────────────────────────────


def _reclaimer(runner, probe, run_log, existing=(), **kwargs) -> StaleLockReclaimer:
    return StaleLockReclaimer(runner, probe, run_log, exists=lambda p: p in existing, **kwargs)


class TestStaleLockReclaimer:
    def test_idempotent_when_nothing_stale(self, run_log: RunLog):
        runner = FakeRunner()
        steps = _reclaimer(runner, FakeProbe(), run_log).reclaim([FRONTEND, LISTS])

        by_name = {s.name: s.status for s in steps}
        assert by_name["kill_contenders"] == ReclaimStatus.SKIPPED
        assert by_name[f"remove_lock {FRONTEND}"] == ReclaimStatus.SKIPPED
        assert by_name[f"remove_lock {LISTS}"] == ReclaimStatus.SKIPPED
        assert by_name["dpkg_configure"] == ReclaimStatus.SUCCEEDED
        assert by_name["apt_fix_broken"] == ReclaimStatus.SUCCEEDED
        assert runner.ran("pkill") == []
        assert runner.ran("rm") == []

    def test_second_call_same_outcome(self, run_log: RunLog):
        reclaimer = _reclaimer(FakeRunner(), FakeProbe(), run_log)
        first = reclaimer.reclaim([FRONTEND])
        second = reclaimer.reclaim([FRONTEND])
        assert first == second

    def test_kills_running_contenders(self, run_log: RunLog):
        runner = FakeRunner()
        runner.respond(["pgrep", "-x", "dpkg"], returncode=0, stdout="4242")
        steps = _reclaimer(runner, FakeProbe(), run_log).reclaim([])

        assert runner.ran("pkill") == [["pkill", "-9", "-x", "dpkg"]]
        assert steps[0].status == ReclaimStatus.SUCCEEDED
        assert steps[0].detail == "dpkg"

    def test_kill_failure_is_attempted(self, run_log: RunLog):
        runner = FakeRunner()
        runner.respond(["pgrep", "-x", "apt"], returncode=0)
        runner.respond(["pkill"], returncode=2)
        steps = _reclaimer(runner, FakeProbe(), run_log).reclaim([])
        assert steps[0].status == ReclaimStatus.ATTEMPTED

    def test_removes_unheld_stale_lock(self, run_log: RunLog):
        runner = FakeRunner()
        _reclaimer(runner, FakeProbe(), run_log, existing={FRONTEND}).reclaim([FRONTEND, LISTS])
        assert runner.ran("rm") == [["rm", "-f", FRONTEND]]

    def test_never_removes_held_lock(self, run_log: RunLog):
        runner = FakeRunner()
        probe = FakeProbe(forever=[FRONTEND])
        steps = _reclaimer(runner, probe, run_log, existing={FRONTEND}).reclaim([FRONTEND])
        assert runner.ran("rm") == []
        assert steps[1].detail == "still held"

    def test_repair_pass_uses_env(self, run_log: RunLog):
        runner = FakeRunner()
        env = {"DEBIAN_FRONTEND": "noninteractive"}
        _reclaimer(runner, FakeProbe(), run_log, env=env).reclaim([])
        assert ["dpkg", "--configure", "-a"] in runner.calls
        assert ["apt-get", "-y", "-f", "install"] in runner.calls
        idx = runner.calls.index(["dpkg", "--configure", "-a"])
        assert runner.envs[idx] == env

    def test_repair_disabled(self, run_log: RunLog):
        runner = FakeRunner()
        steps = _reclaimer(runner, FakeProbe(), run_log, repair=False).reclaim([])
        assert runner.ran("dpkg") == []
        assert all(s.status == ReclaimStatus.SKIPPED for s in steps)

    def test_failing_substep_does_not_stop_others(self, run_log: RunLog):
        runner = FakeRunner()
        runner.raise_on(["pgrep"], OSError("no procfs"))
        runner.respond(["dpkg"], returncode=1, stderr="dpkg: error")
        steps = _reclaimer(runner, FakeProbe(), run_log).reclaim([])

        by_name = {s.name: s for s in steps}
        assert by_name["kill_contenders"].status == ReclaimStatus.ATTEMPTED
        assert "no procfs" in by_name["kill_contenders"].detail
        assert by_name["dpkg_configure"].status == ReclaimStatus.ATTEMPTED
        assert by_name["apt_fix_broken"].status == ReclaimStatus.SUCCEEDED

    def test_one_log_entry_per_substep(self, run_log: RunLog):
        steps = _reclaimer(FakeRunner(), FakeProbe(), run_log).reclaim([FRONTEND])
        reclaim_entries = [m for m in run_log.messages() if m.startswith("Reclaim ")]
        assert len(reclaim_entries) == len(steps) == 4


# ── Retrying Executor ────────────────────────────────────────────────


class SpyReclaimer:
    def __init__(self):
        self.calls: list[tuple[str, ...]] = []

    def reclaim(self, resources):
        self.calls.append(tuple(resources))
        return []


def _executor(run_log, sleep, mock=None, probe=None, **kwargs):
    registry = AdapterRegistry()
    registry.register(mock or MockAdapter(adapter_name="apt"))
    reclaimer = SpyReclaimer()
    waiter = LockWaiter(probe or FakeProbe(), run_log, sleep=sleep)
    return RetryingExecutor(registry, waiter, reclaimer, run_log, sleep=sleep, **kwargs), reclaimer


def _apt_install(**kwargs) -> Action:
    return Action(
        id="apt-base",
        name="apt install curl",
        adapter="apt",
        verb="install",
        args=("curl",),
        resources=(FRONTEND, LISTS),
        **kwargs,
    )


class TestBackoff:
    def test_doubles(self):
        assert backoff_delays(4.0, 5) == [4.0, 8.0, 16.0, 32.0, 64.0]


class TestRetryingExecutor:
    def test_first_try_success(self, run_log: RunLog, fake_sleep: FakeSleep):
        executor, reclaimer = _executor(run_log, fake_sleep)
        result = executor.run(_apt_install())

        assert result.ok
        assert result.attempt_count == 1
        assert fake_sleep.calls == []
        assert reclaimer.calls == []
        assert run_log.messages() == ["apt install curl ok"]

    def test_succeeds_on_third_attempt(self, run_log: RunLog, fake_sleep: FakeSleep):
        mock = MockAdapter(adapter_name="apt")
        mock.fail_times("apt-base", 2)
        executor, reclaimer = _executor(run_log, fake_sleep, mock=mock)

        result = executor.run(_apt_install())

        assert result.ok
        assert [a.index for a in result.attempts] == [1, 2, 3]
        assert [a.outcome for a in result.attempts] == ["failure", "failure", "success"]
        assert fake_sleep.calls == [4.0, 8.0]
        assert result.total_delay == 12.0
        assert len(reclaimer.calls) == 2
        assert run_log.messages("warning") == [
            "apt install curl failed (try 1/5). retry in 4s...",
            "apt install curl failed (try 2/5). retry in 8s...",
        ]
        assert run_log.messages()[-1] == "apt install curl ok after 3 attempts"
        assert [(c.attempt, c.max_attempts) for c in mock.call_log] == [(1, 5), (2, 5), (3, 5)]

    @pytest.mark.parametrize("budget", [1, 2, 3, 5])
    def test_exhaustion_bounds(self, run_log: RunLog, fake_sleep: FakeSleep, budget: int):
        mock = MockAdapter(adapter_name="apt")
        mock.set_failure("apt-base", "E: Unable to locate package curl")
        executor, reclaimer = _executor(run_log, fake_sleep, mock=mock, max_attempts=budget)

        result = executor.run(_apt_install())

        assert not result.ok
        assert mock.calls_for("apt-base") == budget
        assert result.attempt_count == budget
        assert len(reclaimer.calls) == budget - 1
        assert result.total_delay == 4.0 * (2 ** (budget - 1) - 1)
        assert fake_sleep.calls == backoff_delays(4.0, budget - 1)
        assert result.attempts[-1].delay_before_retry == 0.0

    def test_exhausted_log_entries(self, run_log: RunLog, fake_sleep: FakeSleep):
        mock = MockAdapter(adapter_name="apt")
        mock.set_failure("apt-base")
        executor, _ = _executor(run_log, fake_sleep, mock=mock)

        executor.run(_apt_install())

        failures = [m for m in run_log.messages("warning") if "failed (try" in m]
        assert len(failures) == 5
        assert failures[-1] == "apt install curl failed (try 5/5)"
        assert run_log.messages("error") == ["apt install curl exhausted after 5 attempts"]

    def test_action_budget_overrides_default(self, run_log: RunLog, fake_sleep: FakeSleep):
        mock = MockAdapter(adapter_name="apt")
        mock.set_failure("apt-base")
        executor, _ = _executor(run_log, fake_sleep, mock=mock)
        result = executor.run(_apt_install(max_attempts=1))
        assert result.attempt_count == 1
        assert fake_sleep.calls == []

    def test_argument_budget_wins(self, run_log: RunLog, fake_sleep: FakeSleep):
        mock = MockAdapter(adapter_name="apt")
        mock.set_failure("apt-base")
        executor, _ = _executor(run_log, fake_sleep, mock=mock)
        result = executor.run(_apt_install(max_attempts=1), max_attempts=2, initial_delay=1.0)
        assert result.attempt_count == 2
        assert fake_sleep.calls == [1.0]

    def test_waits_for_locks_before_each_attempt(self, run_log: RunLog, fake_sleep: FakeSleep):
        probe = FakeProbe(busy={FRONTEND: 2})
        executor, _ = _executor(run_log, fake_sleep, probe=probe)
        executor.run(_apt_install())
        assert len([m for m in run_log.messages() if m.startswith("Waiting")]) == 2

    def test_no_lock_wait_without_resources(self, run_log: RunLog, fake_sleep: FakeSleep):
        probe = FakeProbe()
        executor, _ = _executor(run_log, fake_sleep, probe=probe)
        executor.run(Action(id="x", adapter="apt", verb="update"))
        assert probe.calls == []

    def test_output_captured_to_file(self, run_log: RunLog, fake_sleep: FakeSleep):
        mock = MockAdapter(adapter_name="apt", default_output="Setting up curl (7.81.0)")
        executor, _ = _executor(run_log, fake_sleep, mock=mock)
        executor.run(_apt_install())
        assert "Setting up curl" in run_log.path.read_text()

    def test_dry_run_counts_as_success(self, run_log: RunLog, fake_sleep: FakeSleep):
        mock = MockAdapter(adapter_name="apt")
        executor, _ = _executor(run_log, fake_sleep, mock=mock, dry_run=True)
        result = executor.run(_apt_install())
        assert result.ok
        assert mock.call_count == 0

    def test_invalid_budget(self, run_log: RunLog, fake_sleep: FakeSleep):
        with pytest.raises(ValueError):
            _executor(run_log, fake_sleep, max_attempts=0)


class TestActionExhaustedError:
    def test_message(self, run_log: RunLog, fake_sleep: FakeSleep):
        mock = MockAdapter(adapter_name="apt")
        mock.set_failure("apt-base", "Reading lists...\nE: Unable to locate package curl")
        executor, _ = _executor(run_log, fake_sleep, mock=mock, max_attempts=2)
        result = executor.run(_apt_install())

        err = ActionExhaustedError(result)
        assert err.action.id == "apt-base"
        assert err.result is result
        assert str(err) == "apt install curl failed after 2 attempts: E: Unable to locate package curl"
