"""
Video input utilities.

This module provides the camera source used by the tracking coordinator: a
``cv2.VideoCapture`` stream with a calibration snapshot and a static camera
pose.
"""

import logging
import platform
from typing import List, Optional, Tuple

import cv2
import numpy as np

from calibration import CameraIntrinsics, load_intrinsics
from pose import Pose, pose_from_config


class CameraStream:
    """Camera source backed by OpenCV video capture."""

    def __init__(self, config=None):
        """Initialize camera stream.

        Args:
            config: Configuration dictionary
        """
        self.config = config or {}
        self.cap: Optional[cv2.VideoCapture] = None
        self.logger = logging.getLogger(__name__)

        # Video settings from config
        self.camera_id = self.config.get('camera_id', 0)
        self.width = self.config.get('video_width', 640)
        self.height = self.config.get('video_height', 480)
        self.fps = self.config.get('video_fps', 30)

        # Backend priority list
        self.backend_priority = self._resolve_backend_priority(
            self.config.get('camera_backend_priority')
        )
        self.selected_backend: Optional[int] = None

        # Frames tolerated before a stream that only yields black frames is abandoned
        self.max_init_attempts = self.config.get('camera_init_attempts', 10)

        self._intrinsics = load_intrinsics(self.config)
        self._pose = pose_from_config(self.config.get('camera_pose'))

        self.frame: Optional[np.ndarray] = None
        self._streaming = False
        self._warmup_frames = 0

    @staticmethod
    def _resolve_backend_priority(user_priority: Optional[List[int]]) -> List[int]:
        """Determine backend priority order based on platform and config."""
        if user_priority:
            return user_priority

        system = platform.system()
        backends: List[int] = []

        def add_backend(name: str):
            value = getattr(cv2, name, None)
            if value is not None:
                backends.append(value)

        if system == 'Darwin':
            add_backend('CAP_AVFOUNDATION')
        elif system == 'Windows':
            add_backend('CAP_DSHOW')
            add_backend('CAP_MSMF')
        else:
            add_backend('CAP_V4L2')
            add_backend('CAP_GSTREAMER')

        add_backend('CAP_ANY')
        return backends or [cv2.CAP_ANY]

    @staticmethod
    def _backend_name(backend: Optional[int]) -> str:
        """Return human-readable name for backend constant."""
        if backend is None:
            return "Unknown"

        for attr in dir(cv2):
            if attr.startswith("CAP_") and getattr(cv2, attr) == backend:
                return attr
        return f"Backend({backend})"

    def open(self):
        """Open the capture device.

        Frames are not read here; ``update()`` warms the stream up one frame
        per tick.

        Returns:
            bool: True if a device was opened, False otherwise
        """
        self.cleanup()

        for backend in self.backend_priority:
            self.logger.info(
                "Attempting to open camera %s using backend %s",
                self.camera_id,
                self._backend_name(backend),
            )
            cap = cv2.VideoCapture(self.camera_id, backend)

            if not cap.isOpened():
                self.logger.warning(
                    "Failed to open camera %s with backend %s",
                    self.camera_id,
                    self._backend_name(backend),
                )
                cap.release()
                continue

            # Set camera properties
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            cap.set(cv2.CAP_PROP_FPS, self.fps)

            self.cap = cap
            self.selected_backend = backend
            self.logger.info(
                "Camera opened with backend %s: requested %sx%s @ %sfps",
                self._backend_name(backend),
                self.width,
                self.height,
                self.fps,
            )
            return True

        self.logger.error(
            "Unable to open camera %s with available backends: %s",
            self.camera_id,
            [self._backend_name(b) for b in self.backend_priority],
        )
        return False

    def load_video_file(self, filepath):
        """Use a video file instead of a camera.

        Args:
            filepath: Path to video file

        Returns:
            bool: True if load successful, False otherwise
        """
        self.cleanup()
        self.cap = cv2.VideoCapture(filepath)

        if not self.cap.isOpened():
            self.logger.error(f"Failed to open video file: {filepath}")
            self.cap = None
            return False

        self.logger.info(f"Video file loaded: {filepath}")
        return True

    def update(self):
        """Read the next frame. Call once per host tick.

        Returns:
            np.ndarray or None: Captured frame or None if unavailable
        """
        if self.cap is None or not self.cap.isOpened():
            self._streaming = False
            return None

        ret, frame = self.cap.read()
        if not ret or frame is None or frame.size == 0:
            if self._streaming:
                self.logger.warning("Failed to capture frame")
            self._streaming = False
            return None

        if not self._streaming:
            self._warmup_frames += 1
            # Completely black frames are typical while the sensor warms up
            if frame.mean() == 0 and self._warmup_frames < self.max_init_attempts:
                self.logger.debug(
                    "Warmup frame %s captured but appears black; waiting...", self._warmup_frames
                )
                return None
            self._streaming = True
            self.logger.info(
                "Camera streaming: %sx%s (backend %s)",
                frame.shape[1],
                frame.shape[0],
                self._backend_name(self.selected_backend),
            )

        self.frame = frame
        return frame

    def is_streaming(self) -> bool:
        return self._streaming

    def current_image(self) -> Optional[np.ndarray]:
        return self.frame

    def current_resolution(self) -> Tuple[int, int]:
        if self.frame is not None:
            return (int(self.frame.shape[1]), int(self.frame.shape[0]))
        if self.cap is not None:
            return (
                int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
                int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            )
        return (int(self.width), int(self.height))

    def intrinsics(self) -> CameraIntrinsics:
        return self._intrinsics

    def current_pose(self) -> Pose:
        return self._pose.copy()

    def get_frame_info(self):
        """Get information about the current video stream.

        Returns:
            dict: Frame information
        """
        if self.cap is None:
            return {}

        width, height = self.current_resolution()
        return {
            'width': width,
            'height': height,
            'fps': int(self.cap.get(cv2.CAP_PROP_FPS)),
            'backend': self._backend_name(self.selected_backend),
            'streaming': self._streaming,
        }

    def cleanup(self):
        """Clean up video resources."""
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.logger.info("Camera stream cleaned up")
        self._streaming = False
        self.frame = None
        self._warmup_frames = 0
