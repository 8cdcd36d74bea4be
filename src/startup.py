"""
Cooperative startup sequencing.

The sequencer is ticked by the host loop. It waits for the camera to stream,
lets one extra tick pass so the first frames settle, then runs calibration
and activation in order. It never blocks between ticks.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional

from collaborators import CameraSource, MarkerTracker
from utils import ConfigurationError

LOGGER = logging.getLogger(__name__)


class StartupState(Enum):
    """Startup stages; STEADY_STATE and HALTED are terminal."""
    WAITING_FOR_HARDWARE = "waiting_for_hardware"
    CALIBRATING = "calibrating"
    REGISTRY_READY = "registry_ready"
    STEADY_STATE = "steady_state"
    HALTED = "halted"


class StartupSequencer:
    """
    Tick-driven state machine for bringing the tracker online.

    ``calibrate`` performs the calibration scaling, registry build and result
    surface sizing; ``activate`` applies the initial visibility and enables
    the frame pipeline. A ``ConfigurationError`` from either halts the
    sequence for the session.
    """

    SETTLE_TICKS = 1

    def __init__(
        self,
        camera: Optional[CameraSource],
        detector: Optional[MarkerTracker],
        calibrate: Callable[[], None],
        activate: Callable[[], None],
    ):
        self.camera = camera
        self.detector = detector
        self._calibrate = calibrate
        self._activate = activate
        self._state = StartupState.WAITING_FOR_HARDWARE
        self._settle_remaining: Optional[int] = None
        self._checked_references = False
        self.ticks_waited = 0

    @property
    def state(self) -> StartupState:
        return self._state

    @property
    def is_steady(self) -> bool:
        return self._state is StartupState.STEADY_STATE

    @property
    def is_finished(self) -> bool:
        return self._state in (StartupState.STEADY_STATE, StartupState.HALTED)

    def tick(self) -> StartupState:
        """Advance the sequence by at most one scheduling tick."""
        if self.is_finished:
            return self._state

        if not self._checked_references:
            self._checked_references = True
            if self.camera is None:
                return self._halt("camera source reference is missing")
            if self.detector is None:
                return self._halt("marker tracker reference is missing")

        if self._state is StartupState.WAITING_FOR_HARDWARE:
            if self._settle_remaining is None:
                if not self.camera.is_streaming():
                    self.ticks_waited += 1
                    return self._state
                LOGGER.info("Camera streaming after %d tick(s); settling", self.ticks_waited)
                self._settle_remaining = self.SETTLE_TICKS

            if self._settle_remaining > 0:
                self._settle_remaining -= 1
                return self._state

            self._transition(StartupState.CALIBRATING)

        try:
            self._calibrate()
            self._transition(StartupState.REGISTRY_READY)
            self._activate()
        except ConfigurationError as exc:
            return self._halt(str(exc))

        self._transition(StartupState.STEADY_STATE)
        return self._state

    def _transition(self, state: StartupState):
        LOGGER.info("Startup: %s -> %s", self._state.name, state.name)
        self._state = state

    def _halt(self, reason: str) -> StartupState:
        LOGGER.error("Fatal configuration error, tracking disabled: %s", reason)
        self._state = StartupState.HALTED
        return self._state
