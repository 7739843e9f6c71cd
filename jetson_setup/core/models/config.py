"""
SetupConfig — the typed configuration for a setup run.

Every tunable the run needs (retry counts, delays, lock resources,
background services, package lists, optional helper scripts) lives
here and is passed explicitly into each component. Nothing is read
from ambient process state after loading.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_LOCK_RESOURCES = (
    "/var/lib/dpkg/lock-frontend",
    "/var/lib/apt/lists/lock",
)

DEFAULT_BASE_PACKAGES = (
    "curl",
    "ca-certificates",
    "gnupg",
    "lsb-release",
    "software-properties-common",
)


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RetryPolicy(_Section):
    """Retry budget for required actions."""

    max_attempts: int = Field(default=5, ge=1)
    initial_delay: float = Field(default=4.0, ge=0)  # doubles after each failure


class LockPolicy(_Section):
    """Which package-database locks to wait on, and how often to poll."""

    resources: list[str] = Field(default_factory=lambda: list(DEFAULT_LOCK_RESOURCES))
    poll_interval: float = Field(default=3.0, ge=0)


class ContenderPolicy(_Section):
    """Background package-management daemons stopped for the run."""

    services: list[str] = Field(
        default_factory=lambda: [
            "packagekit.service",
            "apt-daily.service",
            "apt-daily-upgrade.service",
        ]
    )
    timers: list[str] = Field(
        default_factory=lambda: ["apt-daily.timer", "apt-daily-upgrade.timer"]
    )
    kill_units: list[str] = Field(default_factory=lambda: ["packagekit"])
    kill_processes: list[str] = Field(default_factory=lambda: ["packagekitd"])
    # Restarted on exit. apt-daily services are driven by their timers.
    resume_services: list[str] = Field(default_factory=lambda: ["packagekit.service"])


class ReclaimPolicy(_Section):
    """Stale-lock reclaim behaviour."""

    kill_processes: list[str] = Field(default_factory=lambda: ["apt", "apt-get", "dpkg"])
    repair: bool = True


class BrowserConfig(_Section):
    """Browser installation strategy."""

    strategy: str = "flatpak"  # flatpak, snap, none, or a registered plugin
    flatpak_remote: str = "flathub"
    flatpak_remote_url: str = "https://flathub.org/repo/flathub.flatpakrepo"
    flatpak_app: str = "org.chromium.Chromium"
    snap_name: str = "chromium"
    snap_attempts: int = Field(default=1, ge=1)
    apt_fallback: str | None = "chromium-browser"


class OptionalStepConfig(_Section):
    """An auxiliary helper script run after the required steps."""

    label: str
    script: str  # relative to scripts_dir unless absolute
    args: list[str] = Field(default_factory=list)
    elevated: bool = True
    enabled: bool = True


def _default_optional_steps() -> list[OptionalStepConfig]:
    return [
        OptionalStepConfig(
            label="Pin Terminal to dock",
            script="pin_to_dock.sh",
            args=["org.gnome.Terminal.desktop"],
        ),
        OptionalStepConfig(
            label="Set Terminal font",
            script="set_terminal_font.sh",
            args=["16"],
        ),
        OptionalStepConfig(
            label="Visual Studio Code install",
            script="install_vscode.sh",
        ),
    ]


class SetupConfig(_Section):
    """Root configuration model — loaded from jetson-setup.yml."""

    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    locks: LockPolicy = Field(default_factory=LockPolicy)
    contenders: ContenderPolicy = Field(default_factory=ContenderPolicy)
    reclaim: ReclaimPolicy = Field(default_factory=ReclaimPolicy)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)

    # ── Packages ─────────────────────────────────────────────────
    base_packages: list[str] = Field(default_factory=lambda: list(DEFAULT_BASE_PACKAGES))
    python_packages: list[str] = Field(default_factory=lambda: ["python3-pip"])
    pip_packages: list[str] = Field(default_factory=lambda: ["jetson-stats"])
    upgrade: bool = True

    # ── Execution ────────────────────────────────────────────────
    noninteractive: bool = True   # DEBIAN_FRONTEND=noninteractive
    use_sudo: bool = True
    command_timeout: float | None = None

    # ── Paths ────────────────────────────────────────────────────
    scripts_dir: str = "scripts"
    log_dir: str = "."
    log_prefix: str = "setup_jetson"
    reboot_sentinel: str = "/var/run/reboot-required"

    optional_steps: list[OptionalStepConfig] = Field(default_factory=_default_optional_steps)

    # Directory relative paths resolve against (the config file's directory).
    base_dir: str | None = Field(default=None, exclude=True)

    def _resolve(self, value: str) -> Path:
        path = Path(value).expanduser()
        if path.is_absolute():
            return path
        return Path(self.base_dir or Path.cwd()) / path

    @property
    def scripts_path(self) -> Path:
        return self._resolve(self.scripts_dir)

    @property
    def log_path(self) -> Path:
        return self._resolve(self.log_dir)

    @property
    def package_env(self) -> dict[str, str]:
        """Environment overrides for package-manager commands."""
        if self.noninteractive:
            return {"DEBIAN_FRONTEND": "noninteractive"}
        return {}
