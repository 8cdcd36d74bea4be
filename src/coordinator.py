"""
Marker tracking coordinator.

Ties the camera, the marker tracker and the scene together: runs the
cooperative startup sequence, keeps the camera anchor in sync with the live
camera pose, and hands registered targets to the tracker every frame.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from calibration import CameraIntrinsics, ScaledIntrinsics, result_surface_shape, scale_intrinsics
from collaborators import CameraSource, InputSource, MarkerTracker
from pipeline import (
    FramePipeline,
    FrameStatistics,
    PoseApplication,
    RegistryPoseApplication,
    SingleTargetPoseApplication,
)
from registry import MarkerBinding, MarkerRegistry, bindings_from_config
from scene import DebugSurface, SceneObject, build_scene, create_camera_anchor
from startup import StartupSequencer, StartupState
from utils import ConfigurationError
from visibility import VisibilityController, VisibilityState

LOGGER = logging.getLogger(__name__)

TRACKING_MODES = ("markers", "board")


class MarkerTrackingCoordinator:
    """
    Orchestrates marker tracking for one session.

    Two variants share this class: ``"markers"`` mode drives every target in
    the marker registry, ``"board"`` mode drives a single target from a
    ChArUco board. Call ``tick()`` once per host loop iteration.
    """

    def __init__(
        self,
        camera: Optional[CameraSource],
        detector: Optional[MarkerTracker],
        input_source: Optional[InputSource] = None,
        bindings: Optional[Iterable[MarkerBinding]] = None,
        board_target: Optional[SceneObject] = None,
        debug_surface: Optional[DebugSurface] = None,
        mode: str = "markers",
        initial_visibility: VisibilityState = VisibilityState.AR_CONTENT,
        toggle_button="d",
    ):
        if mode not in TRACKING_MODES:
            raise ConfigurationError(f"Unknown tracking mode {mode!r}, expected one of {TRACKING_MODES}")

        self.camera = camera
        self.detector = detector
        self.mode = mode
        self.bindings: Tuple[MarkerBinding, ...] = tuple(bindings or ())
        self.board_target = board_target
        self.debug_surface = debug_surface

        self.anchor = create_camera_anchor()
        self.registry = MarkerRegistry()
        self._registry_built = False
        self.intrinsics: Optional[CameraIntrinsics] = None
        self.scaled_intrinsics: Optional[ScaledIntrinsics] = None
        self.result_surface: Optional[np.ndarray] = None

        self.pose_application: PoseApplication
        if mode == "board":
            self.pose_application = SingleTargetPoseApplication(board_target)
        else:
            self.pose_application = RegistryPoseApplication(self.registry)

        self.visibility = VisibilityController(debug_surface, self.bound_targets, initial_visibility)
        self.visibility.hide_all()

        self.pipeline = FramePipeline(
            camera=camera,
            detector=detector,
            anchor=self.anchor,
            visibility=self.visibility,
            pose_application=self.pose_application,
            input_source=input_source,
            toggle_button=toggle_button,
            on_resolution_change=self._recalibrate,
        )
        self.sequencer = StartupSequencer(camera, detector, self._initialize_tracking, self._activate)

    @classmethod
    def from_config(
        cls,
        config: Dict,
        camera: Optional[CameraSource],
        detector: Optional[MarkerTracker],
        input_source: Optional[InputSource] = None,
        objects: Optional[Dict[str, SceneObject]] = None,
    ) -> "MarkerTrackingCoordinator":
        """Create a coordinator from a configuration dictionary."""
        if objects is None:
            objects = build_scene(config.get("objects"))

        board_name = config.get("board_object")
        board_target = objects.get(board_name) if board_name else None
        debug_surface = DebugSurface() if config.get("debug_surface", True) else None

        try:
            initial_visibility = VisibilityState(config.get("initial_visibility", "ar"))
        except ValueError as exc:
            raise ConfigurationError(f"Invalid initial_visibility: {exc}") from exc

        return cls(
            camera=camera,
            detector=detector,
            input_source=input_source,
            bindings=bindings_from_config(config.get("marker_bindings"), objects),
            board_target=board_target,
            debug_surface=debug_surface,
            mode=config.get("tracking", {}).get("mode", "markers"),
            initial_visibility=initial_visibility,
            toggle_button=config.get("toggle_key", "d"),
        )

    @property
    def state(self) -> StartupState:
        return self.sequencer.state

    @property
    def stats(self) -> FrameStatistics:
        return self.pipeline.stats

    @property
    def visibility_state(self) -> VisibilityState:
        return self.visibility.state

    def bound_targets(self) -> List[SceneObject]:
        """Every target the coordinator may show, hide or move.

        Board mode includes the board target ahead of the registry targets.
        """
        if self._registry_built:
            targets = self.registry.all_targets()
        else:
            targets = [binding.target for binding in self.bindings if binding.target is not None]
        if self.mode == "board":
            targets = self.pose_application.targets() + targets

        unique: List[SceneObject] = []
        for target in targets:
            if not any(target is seen for seen in unique):
                unique.append(target)
        return unique

    def tick(self) -> bool:
        """Advance startup or run one frame of the pipeline.

        Returns:
            bool: True if a frame was processed this tick
        """
        if not self.sequencer.is_finished:
            self.sequencer.tick()
        if not self.sequencer.is_steady:
            return False
        return self.pipeline.tick()

    def _initialize_tracking(self):
        self.intrinsics = self.camera.intrinsics()
        self._apply_calibration(self.camera.current_resolution())

        self.registry.build(self.bindings)
        self._registry_built = True

        self._configure_result_surface()

    def _activate(self):
        self.visibility.apply(self.visibility.initial_state)
        self.pipeline.enabled = True
        LOGGER.info("Marker tracking active in %s mode", self.mode)

    def _apply_calibration(self, resolution):
        scaled = scale_intrinsics(self.intrinsics, resolution)
        self.detector.initialize(scaled.width, scaled.height, scaled.cx, scaled.cy, scaled.fx, scaled.fy)
        self.scaled_intrinsics = scaled

    def _configure_result_surface(self):
        scaled = self.scaled_intrinsics
        shape = result_surface_shape(scaled, self.detector.downsample_factor())
        self.result_surface = np.zeros(shape, dtype=np.uint8)
        if self.debug_surface is not None:
            self.debug_surface.image = self.result_surface
        self.pipeline.configure_surface(self.result_surface, scaled.resolution)
        LOGGER.info("Result surface configured: %dx%d", shape[1], shape[0])

    def _recalibrate(self, resolution: Tuple[int, int]):
        self._apply_calibration(resolution)
        self._configure_result_surface()
