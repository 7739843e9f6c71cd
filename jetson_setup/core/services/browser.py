"""
Browser installation strategies.

How to install a browser differs between JetPack releases (snapd 2.70
breaks snap Chromium on JetPack 6), so it is a pluggable strategy rather
than a fixed sequence. A strategy turns the browser config into plan
steps:

    flatpak  install flatpak, add the Flathub remote, install Chromium
    snap     snap install chromium, falling back to the apt package
    none     no browser

Register additional strategies with ``register_browser_strategy``.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from jetson_setup.core.engine.executor import RequiredStep
from jetson_setup.core.models.action import Action
from jetson_setup.core.models.config import BrowserConfig

logger = logging.getLogger(__name__)

BrowserStrategy = Callable[[BrowserConfig, Sequence[str]], list[RequiredStep]]

_STRATEGIES: dict[str, BrowserStrategy] = {}


def register_browser_strategy(name: str, strategy: BrowserStrategy) -> None:
    """Register (or replace) a browser strategy by name."""
    if name in _STRATEGIES:
        logger.warning("Overwriting browser strategy: %s", name)
    _STRATEGIES[name] = strategy


def browser_strategies() -> list[str]:
    return sorted(_STRATEGIES)


def browser_steps(config: BrowserConfig, apt_resources: Sequence[str]) -> list[RequiredStep]:
    """Plan steps for the configured browser strategy.

    Raises:
        KeyError: If the strategy is not registered.
    """
    try:
        strategy = _STRATEGIES[config.strategy]
    except KeyError:
        raise KeyError(
            f"Unknown browser strategy '{config.strategy}'. "
            f"Available: {', '.join(browser_strategies())}"
        ) from None
    return strategy(config, apt_resources)


def _flatpak(config: BrowserConfig, apt_resources: Sequence[str]) -> list[RequiredStep]:
    return [
        RequiredStep(
            Action(
                id="browser-flatpak-tool",
                name="apt install flatpak",
                adapter="apt",
                verb="install",
                args=("flatpak",),
                resources=tuple(apt_resources),
            )
        ),
        RequiredStep(
            Action(
                id="browser-flatpak-remote",
                name=f"flatpak remote-add {config.flatpak_remote}",
                adapter="flatpak",
                verb="remote-add",
                args=(config.flatpak_remote, config.flatpak_remote_url),
                max_attempts=1,
            ),
            required=False,
        ),
        RequiredStep(
            Action(
                id="browser-flatpak-install",
                name=f"flatpak install {config.flatpak_app}",
                adapter="flatpak",
                verb="install",
                args=(config.flatpak_remote, config.flatpak_app),
            )
        ),
    ]


def _snap(config: BrowserConfig, apt_resources: Sequence[str]) -> list[RequiredStep]:
    fallbacks: tuple[Action, ...] = ()
    if config.apt_fallback:
        fallbacks = (
            Action(
                id="browser-apt-fallback",
                name=f"apt install {config.apt_fallback}",
                adapter="apt",
                verb="install",
                args=(config.apt_fallback,),
                resources=tuple(apt_resources),
            ),
        )
    return [
        RequiredStep(
            Action(
                id="browser-snap",
                name=f"snap install {config.snap_name}",
                adapter="snap",
                verb="install",
                args=(config.snap_name,),
                max_attempts=config.snap_attempts,
            ),
            fallbacks=fallbacks,
        )
    ]


def _none(config: BrowserConfig, apt_resources: Sequence[str]) -> list[RequiredStep]:
    return []


register_browser_strategy("flatpak", _flatpak)
register_browser_strategy("snap", _snap)
register_browser_strategy("none", _none)
