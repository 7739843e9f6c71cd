"""
Tests for services — setup plan, browser strategies, reboot prompt.
"""

from pathlib import Path

import pytest
from conftest import FakeRunner

from jetson_setup.core.models.config import BrowserConfig, OptionalStepConfig, SetupConfig
from jetson_setup.core.persistence.run_log import RunLog
from jetson_setup.core.services import browser
from jetson_setup.core.services.browser import (
    browser_steps,
    browser_strategies,
    register_browser_strategy,
)
from jetson_setup.core.services.plan import build_plan
from jetson_setup.core.services.reboot import offer_reboot, reboot_required

LOCKS = ["/var/lib/dpkg/lock-frontend", "/var/lib/apt/lists/lock"]


# ── Setup Plan ───────────────────────────────────────────────────────


class TestBuildPlan:
    def test_default_order(self, tmp_path: Path):
        plan = build_plan(SetupConfig(base_dir=str(tmp_path)))
        assert [s.action.id for s in plan.steps] == [
            "apt-update",
            "apt-base",
            "browser-flatpak-tool",
            "browser-flatpak-remote",
            "browser-flatpak-install",
            "apt-python",
            "pip-tools",
            "apt-dist-upgrade",
            "apt-autoremove",
            "apt-autoclean",
        ]

    def test_update_runs_once(self, tmp_path: Path):
        plan = build_plan(SetupConfig(base_dir=str(tmp_path)))
        updates = [s for s in plan.steps if s.action.adapter == "apt" and s.action.verb == "update"]
        assert len(updates) == 1

    def test_base_packages(self, tmp_path: Path):
        plan = build_plan(SetupConfig(base_dir=str(tmp_path)))
        base = plan.steps[1]
        assert base.action.args == ("curl", "ca-certificates", "gnupg", "lsb-release", "software-properties-common")
        assert base.label == "apt install curl ca-certificates gnupg lsb-release software-properties-common"

    def test_apt_steps_carry_lock_resources(self, tmp_path: Path):
        plan = build_plan(SetupConfig(base_dir=str(tmp_path)))
        for step in plan.steps:
            if step.action.adapter == "apt":
                assert step.action.resources == tuple(LOCKS)

    def test_pip_is_best_effort_single_attempt(self, tmp_path: Path):
        plan = build_plan(SetupConfig(base_dir=str(tmp_path)))
        pip = next(s for s in plan.steps if s.action.id == "pip-tools")
        assert pip.required is False
        assert pip.action.max_attempts == 1
        assert pip.action.args == ("jetson-stats",)

    def test_no_upgrade(self, tmp_path: Path):
        plan = build_plan(SetupConfig(upgrade=False, base_dir=str(tmp_path)))
        assert not any(s.action.verb == "dist-upgrade" for s in plan.steps)

    def test_optional_scripts_resolve_against_scripts_dir(self, tmp_path: Path):
        plan = build_plan(SetupConfig(base_dir=str(tmp_path)))
        assert [o.label for o in plan.optional] == [
            "Pin Terminal to dock",
            "Set Terminal font",
            "Visual Studio Code install",
        ]
        assert plan.optional[0].script == tmp_path / "scripts" / "pin_to_dock.sh"
        assert plan.optional[0].args == ("org.gnome.Terminal.desktop",)

    def test_extra_args_appended_to_every_optional_step(self, tmp_path: Path):
        plan = build_plan(SetupConfig(base_dir=str(tmp_path)), extra_args=["--user", "nvidia"])
        assert plan.optional[1].args == ("16", "--user", "nvidia")
        assert plan.optional[2].args == ("--user", "nvidia")

    def test_disabled_optional_step_omitted(self, tmp_path: Path):
        config = SetupConfig(
            base_dir=str(tmp_path),
            optional_steps=[
                OptionalStepConfig(label="On", script="on.sh"),
                OptionalStepConfig(label="Off", script="off.sh", enabled=False),
            ],
        )
        assert [o.label for o in build_plan(config).optional] == ["On"]

    def test_absolute_script_path_kept(self, tmp_path: Path):
        config = SetupConfig(
            base_dir="/elsewhere",
            optional_steps=[OptionalStepConfig(label="Abs", script=str(tmp_path / "abs.sh"))],
        )
        assert build_plan(config).optional[0].script == tmp_path / "abs.sh"

    def test_empty_package_lists_skip_steps(self, tmp_path: Path):
        config = SetupConfig(
            base_dir=str(tmp_path),
            base_packages=[],
            python_packages=[],
            pip_packages=[],
            upgrade=False,
            browser=BrowserConfig(strategy="none"),
        )
        assert [s.action.id for s in build_plan(config).steps] == ["apt-update"]


# ── Browser Strategies ───────────────────────────────────────────────


class TestBrowserStrategies:
    def test_builtin_strategies(self):
        assert {"flatpak", "snap", "none"} <= set(browser_strategies())

    def test_flatpak(self):
        steps = browser_steps(BrowserConfig(), LOCKS)
        assert [s.action.adapter for s in steps] == ["apt", "flatpak", "flatpak"]
        assert steps[1].action.args == ("flathub", "https://flathub.org/repo/flathub.flatpakrepo")
        assert steps[2].action.args == ("flathub", "org.chromium.Chromium")

    def test_flatpak_remote_add_is_best_effort(self):
        tool, remote, install = browser_steps(BrowserConfig(), LOCKS)
        assert remote.required is False
        assert remote.action.max_attempts == 1
        assert tool.required and install.required

    def test_snap_with_apt_fallback(self):
        steps = browser_steps(BrowserConfig(strategy="snap"), LOCKS)
        assert len(steps) == 1
        snap = steps[0]
        assert snap.action.max_attempts == 1
        assert [f.args for f in snap.fallbacks] == [("chromium-browser",)]
        assert snap.fallbacks[0].resources == tuple(LOCKS)

    def test_snap_without_fallback(self):
        steps = browser_steps(BrowserConfig(strategy="snap", apt_fallback=None), LOCKS)
        assert steps[0].fallbacks == ()

    def test_none(self):
        assert browser_steps(BrowserConfig(strategy="none"), LOCKS) == []

    def test_unknown_strategy(self):
        with pytest.raises(KeyError, match="Unknown browser strategy"):
            browser_steps(BrowserConfig(strategy="firefox-deb"), LOCKS)

    def test_register_custom_strategy(self, monkeypatch):
        monkeypatch.setattr(browser, "_STRATEGIES", dict(browser._STRATEGIES))
        register_browser_strategy("test-nothing", lambda config, resources: [])
        assert "test-nothing" in browser_strategies()
        assert browser_steps(BrowserConfig(strategy="test-nothing"), LOCKS) == []


# ── Reboot ───────────────────────────────────────────────────────────


class TestReboot:
    def test_no_sentinel(self, run_log: RunLog, tmp_path: Path):
        runner = FakeRunner()
        asked = []
        rebooted = offer_reboot(
            runner=runner,
            run_log=run_log,
            confirm=lambda p: asked.append(p) or True,
            sentinel=tmp_path / "reboot-required",
        )
        assert not rebooted
        assert asked == []
        assert run_log.messages() == ["Setup complete. Reboot recommended."]

    def test_declined(self, run_log: RunLog, tmp_path: Path):
        sentinel = tmp_path / "reboot-required"
        sentinel.touch()
        runner = FakeRunner()
        assert reboot_required(sentinel)
        assert not offer_reboot(runner=runner, run_log=run_log, confirm=lambda p: False, sentinel=sentinel)
        assert runner.calls == []
        assert "Reboot postponed." in run_log.messages()

    def test_accepted(self, run_log: RunLog, tmp_path: Path):
        sentinel = tmp_path / "reboot-required"
        sentinel.touch()
        runner = FakeRunner()
        assert offer_reboot(runner=runner, run_log=run_log, confirm=lambda p: True, sentinel=sentinel)
        assert runner.calls == [["reboot"]]
        assert runner.elevated == [True]

    def test_reboot_command_fails(self, run_log: RunLog, tmp_path: Path):
        sentinel = tmp_path / "reboot-required"
        sentinel.touch()
        runner = FakeRunner()
        runner.respond(["reboot"], returncode=1)
        assert not offer_reboot(runner=runner, run_log=run_log, confirm=lambda p: True, sentinel=sentinel)
        assert run_log.messages("warning") == ["reboot failed (exit 1)"]
