"""
Per-frame tracking pipeline.

Each tick runs, in order: display toggle, camera anchor sync, marker
detection and pose application. Ticks where the camera is not streaming or
the tracker is not ready are skipped without error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from collaborators import CameraSource, InputSource, MarkerTracker
from registry import MarkerRegistry
from scene import SceneObject
from visibility import VisibilityController

LOGGER = logging.getLogger(__name__)


@dataclass
class FrameStatistics:
    """Counters collected while the pipeline runs."""

    ticks: int = 0
    processed_frames: int = 0
    skipped_not_streaming: int = 0
    skipped_tracker_not_ready: int = 0
    toggles: int = 0
    recalibrations: int = 0

    @property
    def skipped(self) -> int:
        return self.skipped_not_streaming + self.skipped_tracker_not_ready

    def to_dict(self) -> Dict:
        return {
            "ticks": self.ticks,
            "processed_frames": self.processed_frames,
            "skipped": self.skipped,
            "toggles": self.toggles,
            "recalibrations": self.recalibrations,
        }


class PoseApplication:
    """Strategy for handing targets to the tracker's pose estimation."""

    def targets(self) -> List[SceneObject]:
        raise NotImplementedError

    def apply(self, detector: MarkerTracker, anchor: SceneObject):
        raise NotImplementedError


class SingleTargetPoseApplication(PoseApplication):
    """Fixed-board mode: one target follows the whole board."""

    def __init__(self, target: Optional[SceneObject]):
        self.target = target

    def targets(self) -> List[SceneObject]:
        return [self.target] if self.target is not None else []

    def apply(self, detector: MarkerTracker, anchor: SceneObject):
        if self.target is None:
            return
        detector.estimate_pose(self.target, anchor)


class RegistryPoseApplication(PoseApplication):
    """Multi-marker mode: every registered marker drives its own target."""

    def __init__(self, registry: MarkerRegistry):
        self.registry = registry

    def targets(self) -> List[SceneObject]:
        return self.registry.all_targets()

    def apply(self, detector: MarkerTracker, anchor: SceneObject):
        detector.estimate_pose(self.registry, anchor)


class FramePipeline:
    """Runs the steady-state tracking steps once per tick."""

    def __init__(
        self,
        camera: CameraSource,
        detector: MarkerTracker,
        anchor: SceneObject,
        visibility: VisibilityController,
        pose_application: PoseApplication,
        input_source: Optional[InputSource] = None,
        toggle_button=None,
        on_resolution_change: Optional[Callable[[Tuple[int, int]], None]] = None,
    ):
        self.camera = camera
        self.detector = detector
        self.anchor = anchor
        self.visibility = visibility
        self.pose_application = pose_application
        self.input_source = input_source
        self.toggle_button = toggle_button
        self.on_resolution_change = on_resolution_change

        self.enabled = False
        self.surface: Optional[np.ndarray] = None
        self.resolution: Optional[Tuple[int, int]] = None
        self.stats = FrameStatistics()

    def configure_surface(self, surface: np.ndarray, resolution: Tuple[int, int]):
        """Set the result surface and the resolution it was sized for."""
        self.surface = surface
        self.resolution = tuple(resolution)

    def tick(self) -> bool:
        """Run one frame.

        Returns:
            bool: True if the frame was processed, False if skipped
        """
        self.stats.ticks += 1
        if not self.enabled:
            return False

        if not self.camera.is_streaming():
            self.stats.skipped_not_streaming += 1
            LOGGER.debug("Frame skipped: camera not streaming")
            return False

        if not self.detector.is_ready():
            self.stats.skipped_tracker_not_ready += 1
            LOGGER.debug("Frame skipped: tracker not ready")
            return False

        self._handle_toggle()
        self._sync_anchor()
        self._detect_markers()
        self.pose_application.apply(self.detector, self.anchor)

        self.stats.processed_frames += 1
        return True

    def _handle_toggle(self):
        if self.visibility.debug_surface is None or self.input_source is None:
            return
        if self.input_source.edge_down(self.toggle_button):
            self.visibility.toggle()
            self.stats.toggles += 1

    def _sync_anchor(self):
        camera_pose = self.camera.current_pose()
        self.anchor.pose = camera_pose.copy()

    def _detect_markers(self):
        resolution = tuple(self.camera.current_resolution())
        if self.resolution is not None and resolution != self.resolution:
            LOGGER.info("Camera resolution changed %s -> %s", self.resolution, resolution)
            self.stats.recalibrations += 1
            if self.on_resolution_change is not None:
                self.on_resolution_change(resolution)
            else:
                self.resolution = resolution

        self.detector.detect(self.camera.current_image(), self.surface)
