"""
Integration tests for the MARKERANCHOR pipeline.

Runs the coordinator with the real OpenCV trackers against a synthetic camera
that renders markers into frames, so startup, detection, pose placement and
visibility switching are exercised end to end.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import tempfile
from typing import Dict, List, Tuple

import cv2
import numpy as np
import pytest

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from calibration import CameraIntrinsics
from coordinator import MarkerTrackingCoordinator
from main import parse_args
from marker_detect import create_tracker, get_dictionary
from pose import Pose
from startup import StartupState
from ui import KeyboardInput
from utils import get_config, save_config, validate_config
from video import CameraStream
from visibility import VisibilityState

LOGGER = logging.getLogger(__name__)


class SyntheticMarkerCamera:
    """Camera that renders a chosen set of ArUco markers onto a white frame."""

    def __init__(
        self,
        resolution: Tuple[int, int] = (1280, 960),
        warmup_ticks: int = 2,
        marker_px: int = 240,
    ):
        self.resolution = resolution
        self.warmup_ticks = warmup_ticks
        self.marker_px = marker_px
        self.visible_ids: List[int] = []
        self.pose = Pose.identity()
        self._dictionary = get_dictionary("DICT_4X4_50")
        self._ticks = 0

    def advance(self):
        self._ticks += 1

    def is_streaming(self) -> bool:
        return self._ticks > self.warmup_ticks

    def current_image(self) -> np.ndarray:
        width, height = self.resolution
        frame = np.full((height, width), 255, dtype=np.uint8)
        for slot, marker_id in enumerate(self.visible_ids):
            marker = cv2.aruco.generateImageMarker(self._dictionary, marker_id, self.marker_px)
            x = 80 + slot * (self.marker_px + 80)
            y = (height - self.marker_px) // 2
            frame[y:y + self.marker_px, x:x + self.marker_px] = marker
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)

    def current_resolution(self) -> Tuple[int, int]:
        return self.resolution

    def intrinsics(self) -> CameraIntrinsics:
        # Calibrated at half the delivered resolution
        return CameraIntrinsics(
            focal_length=(500.0, 500.0),
            principal_point=(320.0, 240.0),
            reference_resolution=(640, 480),
        )

    def current_pose(self) -> Pose:
        return self.pose.copy()


def run_ticks(camera: SyntheticMarkerCamera, coordinator: MarkerTrackingCoordinator, count: int):
    processed = 0
    for _ in range(count):
        camera.advance()
        if coordinator.tick():
            processed += 1
    return processed


@pytest.fixture
def config() -> Dict:
    cfg = get_config()
    cfg["tracking"]["marker_length"] = 0.05
    cfg["tracking"]["downsample_factor"] = 2
    cfg["marker_bindings"] = [
        {"marker_id": 0, "object": "cube"},
        {"marker_id": 1, "object": "pyramid"},
        {"marker_id": 0, "object": "board_content"},
    ]
    return cfg


class TestMarkerPipeline:
    """Coordinator with the ArUco tracker."""

    def test_startup_and_tracking(self, config):
        camera = SyntheticMarkerCamera()
        tracker = create_tracker(config["tracking"])
        keys = KeyboardInput()
        coordinator = MarkerTrackingCoordinator.from_config(config, camera, tracker, keys)

        # Two warmup ticks, one settle tick, then calibration
        assert run_ticks(camera, coordinator, 3) == 0
        assert coordinator.state is StartupState.WAITING_FOR_HARDWARE
        camera.visible_ids = [0, 1]
        assert run_ticks(camera, coordinator, 1) == 1
        assert coordinator.state is StartupState.STEADY_STATE

        scaled = coordinator.scaled_intrinsics
        assert (scaled.fx, scaled.fy, scaled.cx, scaled.cy) == (1000.0, 1000.0, 640.0, 480.0)
        assert coordinator.result_surface.shape == (480, 640, 3)

        # Later duplicate binding wins: marker 0 drives board_content
        board_content = coordinator.registry.lookup(0)
        pyramid = coordinator.registry.lookup(1)
        assert board_content.name == "board_content"
        assert pyramid.name == "pyramid"

        expected_depth = 1000.0 * 0.05 / camera.marker_px
        assert board_content.pose.position[2] == pytest.approx(expected_depth, abs=0.01)
        assert pyramid.pose.position[2] == pytest.approx(expected_depth, abs=0.01)
        assert pyramid.pose.position[0] > board_content.pose.position[0]
        assert board_content.is_visible and pyramid.is_visible

    def test_lost_marker_and_debug_toggle(self, config):
        camera = SyntheticMarkerCamera()
        tracker = create_tracker(config["tracking"])
        keys = KeyboardInput()
        coordinator = MarkerTrackingCoordinator.from_config(config, camera, tracker, keys)
        camera.visible_ids = [0, 1]
        run_ticks(camera, coordinator, 5)

        pyramid = coordinator.registry.lookup(1)
        pyramid_pose = pyramid.pose.copy()

        # Marker 1 disappears while the camera moves
        camera.visible_ids = [0]
        camera.pose = Pose(position=[0.0, 0.0, 1.0])
        run_ticks(camera, coordinator, 1)
        assert pyramid.pose.is_close(pyramid_pose)
        expected_depth = 1000.0 * 0.05 / camera.marker_px
        assert coordinator.registry.lookup(0).pose.position[2] == pytest.approx(1.0 + expected_depth, abs=0.01)

        keys.poll(ord(config["toggle_key"]))
        run_ticks(camera, coordinator, 1)
        assert coordinator.visibility_state is VisibilityState.DEBUG_OVERLAY
        assert coordinator.debug_surface.enabled
        assert coordinator.debug_surface.image.mean() > 0
        assert all(target.is_hidden for target in coordinator.bound_targets())

    def test_missing_camera_keeps_content_hidden(self, config):
        tracker = create_tracker(config["tracking"])
        coordinator = MarkerTrackingCoordinator.from_config(config, None, tracker)
        for _ in range(5):
            assert not coordinator.tick()
        assert coordinator.state is StartupState.HALTED
        assert not tracker.is_ready()
        assert all(target.is_hidden for target in coordinator.bound_targets())
        assert not coordinator.debug_surface.enabled


class TestConfiguration:
    """Configuration defaults, persistence and CLI parsing."""

    def test_defaults_validate(self):
        assert validate_config(get_config())

    def test_invalid_mode_rejected(self):
        cfg = get_config()
        cfg["tracking"]["mode"] = "hologram"
        assert not validate_config(cfg)

    def test_save_and_load(self):
        cfg = get_config()
        cfg["toggle_key"] = "x"
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "config.json")
            assert save_config(cfg, path)
            with open(path) as f:
                assert json.load(f)["toggle_key"] == "x"
            assert get_config(path)["toggle_key"] == "x"

    def test_defaults_are_not_shared(self):
        first = get_config()
        first["tracking"]["mode"] = "board"
        assert get_config()["tracking"]["mode"] == "markers"

    def test_parse_args(self):
        args = parse_args(["--mode", "board", "--camera", "2", "-V"])
        assert args.mode == "board"
        assert args.camera == 2
        assert args.verbose


class TestCameraStream:
    """Camera source behaviour before a device is opened."""

    def test_unopened_stream(self):
        camera = CameraStream(get_config())
        assert not camera.is_streaming()
        assert camera.update() is None
        assert camera.current_image() is None
        assert camera.current_resolution() == (1280, 960)
        assert camera.intrinsics().reference_resolution == (640, 480)
        assert camera.current_pose().is_close(Pose.identity())
        assert camera.get_frame_info() == {}

    def test_static_pose_from_config(self):
        cfg = get_config()
        cfg["camera_pose"] = {"position": [0.0, 1.6, 0.0], "rotation_vector": [0.0, 0.0, 0.0]}
        camera = CameraStream(cfg)
        np.testing.assert_allclose(camera.current_pose().position, [0.0, 1.6, 0.0])


class TestKeyboardInput:

    def test_edge_reported_for_one_tick(self):
        keys = KeyboardInput()
        keys.poll(ord("d"))
        assert keys.edge_down("d")
        assert not keys.edge_down("q")
        keys.poll(0xFF)
        assert not keys.edge_down("d")

    def test_held_key_is_not_pressed_again(self):
        keys = KeyboardInput()
        keys.poll(ord("d"))
        assert keys.edge_down("d")
        keys.poll(ord("d"))
        assert not keys.edge_down("d")
        keys.poll(0xFF)
        keys.poll(ord("d"))
        assert keys.edge_down("d")

    def test_quit_keys(self):
        keys = KeyboardInput()
        keys.poll(27)
        assert keys.quit_requested()


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
