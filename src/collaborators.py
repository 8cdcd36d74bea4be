"""
Interfaces of the services the tracking coordinator depends on.

The default OpenCV implementations live in ``video``, ``marker_detect`` and
``ui``; tests substitute lightweight fakes.
"""

from __future__ import annotations

from typing import Protocol, Tuple, Union

import numpy as np

from calibration import CameraIntrinsics
from pose import Pose
from registry import MarkerRegistry
from scene import SceneObject


class CameraSource(Protocol):
    """Camera subsystem delivering frames, calibration and camera pose."""

    def is_streaming(self) -> bool: ...

    def current_image(self) -> np.ndarray: ...

    def current_resolution(self) -> Tuple[int, int]: ...

    def intrinsics(self) -> CameraIntrinsics: ...

    def current_pose(self) -> Pose: ...


class MarkerTracker(Protocol):
    """Marker detection and pose estimation capability."""

    def is_ready(self) -> bool: ...

    def initialize(self, width: int, height: int, cx: float, cy: float, fx: float, fy: float): ...

    def downsample_factor(self) -> int: ...

    def detect(self, image: np.ndarray, surface: np.ndarray): ...

    def estimate_pose(
        self,
        target_or_registry: Union[SceneObject, MarkerRegistry],
        reference_frame: SceneObject,
    ): ...


class InputSource(Protocol):
    """Discrete button input polled once per tick."""

    def edge_down(self, button_id) -> bool: ...
