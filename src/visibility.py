"""
Display mode switching between the detector debug view and AR content.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Iterable, List, Optional

from scene import DebugSurface, SceneObject

LOGGER = logging.getLogger(__name__)


class VisibilityState(Enum):
    """Which of the two display layers is shown."""
    DEBUG_OVERLAY = "debug"
    AR_CONTENT = "ar"

    def toggled(self) -> "VisibilityState":
        if self is VisibilityState.DEBUG_OVERLAY:
            return VisibilityState.AR_CONTENT
        return VisibilityState.DEBUG_OVERLAY


class VisibilityController:
    """
    Two-state display switch.

    The debug surface and the bound targets are kept complementary: entering
    one mode enables its layer and disables the other. Targets are read from
    ``targets_provider`` on every application so that registry rebuilds are
    picked up.
    """

    def __init__(
        self,
        debug_surface: Optional[DebugSurface],
        targets_provider: Callable[[], Iterable[SceneObject]],
        initial_state: VisibilityState = VisibilityState.AR_CONTENT,
    ):
        self.debug_surface = debug_surface
        self._targets_provider = targets_provider
        self.initial_state = initial_state
        self._state = initial_state
        self._applied = False

    @property
    def state(self) -> VisibilityState:
        return self._state

    @property
    def applied(self) -> bool:
        """False until the first mode has been applied."""
        return self._applied

    def hide_all(self):
        """Pre-activation state: nothing is shown."""
        self._set_layers(surface_enabled=False, targets_enabled=False)
        self._applied = False

    def apply(self, state: Optional[VisibilityState] = None):
        """Apply ``state`` (or the current state) to surface and targets."""
        if state is not None:
            self._state = state
        show_debug = self._state is VisibilityState.DEBUG_OVERLAY
        self._set_layers(surface_enabled=show_debug, targets_enabled=not show_debug)
        self._applied = True
        LOGGER.info("Visibility set to %s", self._state.name)

    def toggle(self) -> VisibilityState:
        self.apply(self._state.toggled())
        return self._state

    def _set_layers(self, surface_enabled: bool, targets_enabled: bool):
        targets: List[SceneObject] = [t for t in self._targets_provider() if t is not None]

        if self.debug_surface is not None:
            self.debug_surface.enabled = surface_enabled
        for target in targets:
            target.set_renderers_enabled(targets_enabled)
