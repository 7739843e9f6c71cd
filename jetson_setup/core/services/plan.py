"""
Setup plan — the ordered steps of a Jetson post-flash setup.

    apt-get update
    apt-get install <base packages>
    <browser strategy steps>
    apt-get install python3-pip
    pip3 install -U jetson-stats        (best-effort)
    apt-get dist-upgrade / autoremove / autoclean   (when upgrade is on)
    <optional helper scripts>
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from jetson_setup.core.engine.executor import OptionalStep, RequiredStep, SetupPlan
from jetson_setup.core.models.action import Action
from jetson_setup.core.models.config import SetupConfig
from jetson_setup.core.services.browser import browser_steps

logger = logging.getLogger(__name__)

UPGRADE_VERBS = ("dist-upgrade", "autoremove", "autoclean")


def _apt(action_id: str, verb: str, packages: Sequence[str], resources: Sequence[str]) -> RequiredStep:
    args = tuple(packages)
    label = f"apt {verb}" + (f" {' '.join(args)}" if args else "")
    return RequiredStep(
        Action(
            id=action_id,
            name=label,
            adapter="apt",
            verb=verb,
            args=args,
            resources=tuple(resources),
        )
    )


def _script_path(scripts_dir: Path, script: str) -> Path:
    path = Path(script).expanduser()
    return path if path.is_absolute() else scripts_dir / path


def build_plan(config: SetupConfig, extra_args: Sequence[str] = ()) -> SetupPlan:
    """Build the setup plan from configuration.

    Args:
        config: Setup configuration.
        extra_args: Positional CLI arguments, appended to every optional
            script's configured arguments.
    """
    resources = config.locks.resources
    plan = SetupPlan()

    plan.steps.append(_apt("apt-update", "update", (), resources))
    if config.base_packages:
        plan.steps.append(_apt("apt-base", "install", config.base_packages, resources))

    plan.steps.extend(browser_steps(config.browser, resources))

    if config.python_packages:
        plan.steps.append(_apt("apt-python", "install", config.python_packages, resources))

    if config.pip_packages:
        plan.steps.append(
            RequiredStep(
                Action(
                    id="pip-tools",
                    name=f"pip install {' '.join(config.pip_packages)}",
                    adapter="pip",
                    verb="install",
                    args=tuple(config.pip_packages),
                    max_attempts=1,
                ),
                required=False,
            )
        )

    if config.upgrade:
        for verb in UPGRADE_VERBS:
            plan.steps.append(_apt(f"apt-{verb}", verb, (), resources))

    scripts_dir = config.scripts_path
    for opt in config.optional_steps:
        if not opt.enabled:
            logger.debug("Optional step disabled: %s", opt.label)
            continue
        plan.optional.append(
            OptionalStep(
                label=opt.label,
                script=_script_path(scripts_dir, opt.script),
                args=(*opt.args, *extra_args),
                elevated=opt.elevated,
            )
        )

    logger.info(
        "Planned %d steps (%d optional)", plan.total_steps, len(plan.optional)
    )
    return plan
