"""
Tests for the OpenCV marker trackers.
"""

import os
import sys
import unittest

import cv2
import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from marker_detect import (  # type: ignore
    ArucoMarkerTracker,
    CharucoBoardTracker,
    MarkerTrackingConfiguration,
    create_tracker,
    get_dictionary,
)
from pose import Pose  # type: ignore
from registry import MarkerBinding, MarkerRegistry  # type: ignore
from scene import SceneObject  # type: ignore
from utils import ConfigurationError  # type: ignore

MARKER_PX = 200
MARKER_LENGTH = 0.05


def render_marker_frame(marker_id, width=640, height=480, top_left=(220, 140)):
    """White BGR frame with one ArUco marker pasted at ``top_left``."""
    marker = cv2.aruco.generateImageMarker(get_dictionary("DICT_4X4_50"), marker_id, MARKER_PX)
    frame = np.full((height, width), 255, dtype=np.uint8)
    x, y = top_left
    frame[y:y + MARKER_PX, x:x + MARKER_PX] = marker
    return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)


class TestArucoMarkerTracker(unittest.TestCase):
    """Detection and pose placement of individual markers."""

    def setUp(self):
        self.tracker = ArucoMarkerTracker({
            "dictionary": "DICT_4X4_50",
            "marker_length": MARKER_LENGTH,
            "downsample_factor": 2,
        })
        self.surface = np.zeros((240, 320, 3), dtype=np.uint8)
        self.anchor = SceneObject("CameraAnchor")

    def test_ready_only_after_initialize(self):
        self.assertFalse(self.tracker.is_ready())
        self.assertEqual(self.tracker.downsample_factor(), 2)
        self.tracker.initialize(640, 480, 320.0, 240.0, 600.0, 600.0)
        self.assertTrue(self.tracker.is_ready())

    def test_detect_writes_result_surface(self):
        self.tracker.initialize(640, 480, 320.0, 240.0, 600.0, 600.0)
        detections = self.tracker.detect(render_marker_frame(3), self.surface)

        self.assertEqual(sorted(detections), [3])
        corners = detections[3]
        self.assertEqual(corners.shape, (4, 2))
        # Corners are reported at full resolution
        np.testing.assert_allclose(corners[0], [220, 140], atol=3.0)
        np.testing.assert_allclose(corners[2], [420, 340], atol=3.0)
        self.assertGreater(self.surface.mean(), 0)

    def test_estimate_pose_moves_only_detected_targets(self):
        self.tracker.initialize(640, 480, 320.0, 240.0, 600.0, 600.0)
        detected_target = SceneObject("detected")
        missing_target = SceneObject("missing", pose=Pose(position=[9.0, 9.0, 9.0]))
        registry = MarkerRegistry().build([
            MarkerBinding(3, detected_target),
            MarkerBinding(7, missing_target),
        ])
        self.anchor.pose = Pose(position=[1.0, 0.0, 0.0])

        self.tracker.detect(render_marker_frame(3), self.surface)
        moved = self.tracker.estimate_pose(registry, self.anchor)

        self.assertEqual(moved, [3])
        # 200 px wide 5 cm marker at f=600 sits 15 cm in front of the camera
        expected_depth = 600.0 * MARKER_LENGTH / MARKER_PX
        np.testing.assert_allclose(detected_target.pose.position, [1.0, 0.0, expected_depth], atol=0.01)
        # Marker faces the camera
        self.assertLess(detected_target.pose.rotation[2, 2], -0.9)
        np.testing.assert_allclose(missing_target.pose.position, [9.0, 9.0, 9.0])

    def test_unbound_marker_is_ignored(self):
        self.tracker.initialize(640, 480, 320.0, 240.0, 600.0, 600.0)
        registry = MarkerRegistry().build([MarkerBinding(5, SceneObject("other"))])
        self.tracker.detect(render_marker_frame(3), self.surface)
        self.assertEqual(self.tracker.estimate_pose(registry, self.anchor), [])

    def test_pose_retained_when_marker_disappears(self):
        self.tracker.initialize(640, 480, 320.0, 240.0, 600.0, 600.0)
        target = SceneObject("cube")
        registry = MarkerRegistry().build([MarkerBinding(3, target)])

        self.tracker.detect(render_marker_frame(3), self.surface)
        self.tracker.estimate_pose(registry, self.anchor)
        first_pose = target.pose.copy()

        blank = np.full((480, 640, 3), 255, dtype=np.uint8)
        self.assertEqual(self.tracker.detect(blank, self.surface), {})
        self.tracker.estimate_pose(registry, self.anchor)
        self.assertTrue(target.pose.is_close(first_pose))

    def test_single_target_follows_lowest_id(self):
        self.tracker.initialize(640, 480, 320.0, 240.0, 600.0, 600.0)
        target = SceneObject("single")
        self.tracker.detect(render_marker_frame(4), self.surface)
        self.assertEqual(self.tracker.estimate_pose(target, self.anchor), [4])
        self.assertGreater(target.pose.position[2], 0.1)

    def test_requires_initialize(self):
        with self.assertRaises(RuntimeError):
            self.tracker.detect(render_marker_frame(3), self.surface)


class TestCharucoBoardTracker(unittest.TestCase):
    """Board detection drives a single target."""

    def setUp(self):
        self.config = {
            "dictionary": "DICT_4X4_50",
            "downsample_factor": 2,
            "board": {"squares_x": 5, "squares_y": 7, "square_length": 0.04, "marker_length": 0.03},
        }
        self.tracker = CharucoBoardTracker(self.config)
        self.tracker.initialize(960, 960, 480.0, 480.0, 800.0, 800.0)

    def render_board_frame(self):
        board_image = self.tracker.board.generateImage((500, 700), marginSize=20)
        frame = np.full((960, 960), 255, dtype=np.uint8)
        frame[130:830, 230:730] = board_image
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)

    def test_board_pose(self):
        surface = np.zeros((480, 480, 3), dtype=np.uint8)
        count = self.tracker.detect(self.render_board_frame(), surface)
        self.assertGreaterEqual(count, 4)
        self.assertEqual(self.tracker.charuco_corners.shape, (count, 1, 2))
        self.assertEqual(self.tracker.charuco_ids.shape, (count, 1))
        self.assertGreater(surface.mean(), 0)

        anchor = SceneObject("CameraAnchor")
        target = SceneObject("board_content")
        self.assertTrue(self.tracker.estimate_pose(target, anchor))
        self.assertGreater(target.pose.position[2], 0.0)

    def test_board_lost_keeps_pose(self):
        anchor = SceneObject("CameraAnchor")
        target = SceneObject("board_content", pose=Pose(position=[0.0, 0.0, 2.0]))
        blank = np.full((960, 960, 3), 255, dtype=np.uint8)
        self.assertEqual(self.tracker.detect(blank, None), 0)
        self.assertFalse(self.tracker.estimate_pose(target, anchor))
        np.testing.assert_allclose(target.pose.position, [0.0, 0.0, 2.0])

    def test_registry_not_supported(self):
        with self.assertRaises(TypeError):
            self.tracker.estimate_pose(MarkerRegistry(), SceneObject("CameraAnchor"))


class TestTrackerConfiguration(unittest.TestCase):

    def test_unknown_dictionary(self):
        with self.assertRaises(ConfigurationError):
            ArucoMarkerTracker({"dictionary": "DICT_9X9_1"})

    def test_board_section_is_flattened(self):
        config = MarkerTrackingConfiguration.from_dict({
            "board": {"squares_x": 3, "square_length": 0.1, "marker_length": 0.07},
            "unrelated": True,
        })
        self.assertEqual(config.squares_x, 3)
        self.assertEqual(config.square_length, 0.1)
        self.assertEqual(config.board_marker_length, 0.07)

    def test_invalid_downsample(self):
        with self.assertRaises(ConfigurationError):
            MarkerTrackingConfiguration(downsample_factor=0)

    def test_create_tracker_by_mode(self):
        self.assertIsInstance(create_tracker({"mode": "markers"}), ArucoMarkerTracker)
        self.assertIsInstance(create_tracker({"mode": "board"}), CharucoBoardTracker)
        with self.assertRaises(ConfigurationError):
            create_tracker({"mode": "hologram"})


if __name__ == "__main__":
    unittest.main()
