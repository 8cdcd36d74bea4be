"""
Marker detection module.

OpenCV implementations of the marker tracker interface:

- ``ArucoMarkerTracker``: individual ArUco markers, one pose per marker id
- ``CharucoBoardTracker``: a ChArUco board, one pose for the whole board

Both detect on a downsampled copy of the camera image, draw the detections
into the result surface for debug display, and place targets relative to the
camera anchor. Targets whose markers are not visible keep their last pose.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from pose import Pose
from registry import MarkerRegistry
from scene import SceneObject
from utils import ConfigurationError

LOGGER = logging.getLogger(__name__)


@dataclass
class MarkerTrackingConfiguration:
    """Configuration for the OpenCV marker trackers."""

    dictionary: str = "DICT_4X4_50"
    marker_length: float = 0.05  # meters
    downsample_factor: int = 2
    dist_coeffs: Sequence[float] = field(default_factory=lambda: [0.0, 0.0, 0.0, 0.0, 0.0])
    draw_axes: bool = True
    axis_length: float = 0.05  # meters

    # ChArUco board geometry
    squares_x: int = 5
    squares_y: int = 7
    square_length: float = 0.04  # meters
    board_marker_length: float = 0.03  # meters
    min_board_corners: int = 4

    def __post_init__(self):
        if self.downsample_factor < 1:
            raise ConfigurationError(f"downsample_factor must be >= 1, got {self.downsample_factor}")
        if self.marker_length <= 0:
            raise ConfigurationError("marker_length must be positive")

    @classmethod
    def from_dict(cls, config: Optional[Dict]) -> "MarkerTrackingConfiguration":
        cfg_dict = dict(config or {})
        board = cfg_dict.pop("board", None) or {}
        if "marker_length" in board:
            cfg_dict.setdefault("board_marker_length", board["marker_length"])
        for key in ("squares_x", "squares_y", "square_length"):
            if key in board:
                cfg_dict.setdefault(key, board[key])
        return cls(**{
            k: v for k, v in cfg_dict.items()
            if k in cls.__dataclass_fields__
        })


def get_dictionary(name: str):
    """Resolve a predefined ArUco dictionary such as ``"DICT_4X4_50"``."""
    dictionary_id = getattr(cv2.aruco, name, None)
    if dictionary_id is None or not name.startswith("DICT_"):
        raise ConfigurationError(f"Unknown ArUco dictionary: {name}")
    return cv2.aruco.getPredefinedDictionary(dictionary_id)


def square_marker_points(marker_length: float) -> np.ndarray:
    """Marker corners in the marker frame, ordered as solvePnP IPPE_SQUARE expects."""
    half = marker_length / 2.0
    return np.array(
        [
            [-half, half, 0.0],
            [half, half, 0.0],
            [half, -half, 0.0],
            [-half, -half, 0.0],
        ],
        dtype=np.float32,
    )


class _OpenCVMarkerTracker:
    """Shared camera setup and image handling for the OpenCV trackers."""

    def __init__(self, config: Optional[Dict] = None):
        self.config = MarkerTrackingConfiguration.from_dict(config)
        self.dictionary = get_dictionary(self.config.dictionary)
        self.camera_matrix: Optional[np.ndarray] = None
        self.dist_coeffs = np.asarray(self.config.dist_coeffs, dtype=np.float64).reshape(-1, 1)
        self.resolution: Optional[Tuple[int, int]] = None
        self._ready = False

    def is_ready(self) -> bool:
        return self._ready

    def downsample_factor(self) -> int:
        return self.config.downsample_factor

    def initialize(self, width: int, height: int, cx: float, cy: float, fx: float, fy: float):
        """Set the camera model used for pose estimation."""
        self.camera_matrix = np.array(
            [
                [fx, 0.0, cx],
                [0.0, fy, cy],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )
        self.resolution = (int(width), int(height))
        self._ready = True
        LOGGER.info(
            "%s initialized: %dx%d, camera matrix:\n%s",
            type(self).__name__, width, height, self.camera_matrix,
        )

    def _ensure_initialized(self):
        if not self._ready:
            raise RuntimeError(f"{type(self).__name__} not initialized. Call initialize() first.")

    def _prepare(self, image: np.ndarray, surface: Optional[np.ndarray]) -> Tuple[np.ndarray, np.ndarray, Tuple[float, float]]:
        """Downsample the camera image.

        Returns:
            (small_bgr, small_gray, (scale_x, scale_y)) where the scale maps
            small-image pixels back to full resolution
        """
        height, width = image.shape[:2]
        if surface is not None:
            small_size = (surface.shape[1], surface.shape[0])
        else:
            k = self.config.downsample_factor
            small_size = (max(width // k, 1), max(height // k, 1))

        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        elif image.shape[2] == 4:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)

        if small_size != (width, height):
            small = cv2.resize(image, small_size, interpolation=cv2.INTER_AREA)
        else:
            small = image.copy()
        gray = cv2.cvtColor(small, cv2.COLOR_BGR2GRAY)
        return small, gray, (width / small_size[0], height / small_size[1])

    @staticmethod
    def _publish(small: np.ndarray, surface: Optional[np.ndarray]):
        # Write in place so holders of the surface see the new image
        if surface is not None:
            surface[...] = small

    def _draw_axes(self, small: np.ndarray, scale: Tuple[float, float], rvec, tvec, length: float):
        scaled_matrix = self.camera_matrix.copy()
        scaled_matrix[0, :] /= scale[0]
        scaled_matrix[1, :] /= scale[1]
        try:
            cv2.drawFrameAxes(small, scaled_matrix, self.dist_coeffs, rvec, tvec, length)
        except cv2.error as exc:
            LOGGER.debug("drawFrameAxes failed: %s", exc)


class ArucoMarkerTracker(_OpenCVMarkerTracker):
    """Detects individual ArUco markers and estimates one pose per marker."""

    def __init__(self, config: Optional[Dict] = None):
        super().__init__(config)
        parameters = cv2.aruco.DetectorParameters()
        parameters.cornerRefinementMethod = cv2.aruco.CORNER_REFINE_SUBPIX
        self.detector = cv2.aruco.ArucoDetector(self.dictionary, parameters)
        self.object_points = square_marker_points(self.config.marker_length)
        self.detections: Dict[int, np.ndarray] = {}

    def detect(self, image: np.ndarray, surface: Optional[np.ndarray] = None) -> Dict[int, np.ndarray]:
        """Detect markers in ``image``.

        Args:
            image: Camera frame (BGR, BGRA or grayscale)
            surface: Optional result image written with the annotated detections

        Returns:
            dict: Marker id to 4x2 corner array at full resolution
        """
        self._ensure_initialized()
        small, gray, scale = self._prepare(image, surface)

        corners, ids, _ = self.detector.detectMarkers(gray)
        self.detections = {}
        if ids is not None and len(ids) > 0:
            cv2.aruco.drawDetectedMarkers(small, corners, ids)
            for marker_corners, marker_id in zip(corners, ids.flatten()):
                full = marker_corners.reshape(4, 2).astype(np.float64) * np.array(scale)
                self.detections[int(marker_id)] = full.astype(np.float32)

        if self.config.draw_axes and self.detections:
            for marker_id in self.detections:
                solved = self.solve_marker(marker_id)
                if solved is not None:
                    self._draw_axes(small, scale, solved[0], solved[1], self.config.axis_length)

        self._publish(small, surface)
        LOGGER.debug("Detected markers: %s", sorted(self.detections))
        return self.detections

    def solve_marker(self, marker_id: int) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """Solve (rvec, tvec) of a detected marker in the camera frame."""
        corners = self.detections.get(marker_id)
        if corners is None:
            return None
        ok, rvec, tvec = cv2.solvePnP(
            self.object_points,
            corners,
            self.camera_matrix,
            self.dist_coeffs,
            flags=cv2.SOLVEPNP_IPPE_SQUARE,
        )
        if not ok:
            LOGGER.debug("solvePnP failed for marker %d", marker_id)
            return None
        return rvec, tvec

    def estimate_pose(
        self,
        target_or_registry: Union[SceneObject, MarkerRegistry],
        reference_frame: SceneObject,
    ) -> List[int]:
        """Place targets of detected markers relative to ``reference_frame``.

        A registry moves every bound target whose marker is visible; a single
        target follows the lowest visible marker id.

        Returns:
            list: Marker ids whose targets were moved
        """
        self._ensure_initialized()
        if isinstance(target_or_registry, MarkerRegistry):
            assignments = [
                (marker_id, target_or_registry.lookup(marker_id))
                for marker_id in sorted(self.detections)
            ]
        elif self.detections:
            assignments = [(min(self.detections), target_or_registry)]
        else:
            assignments = []

        moved: List[int] = []
        for marker_id, target in assignments:
            if target is None:
                continue
            solved = self.solve_marker(marker_id)
            if solved is None:
                continue
            marker_in_camera = Pose.from_rvec_tvec(*solved)
            target.pose = reference_frame.pose.compose(marker_in_camera)
            moved.append(marker_id)
        return moved


class CharucoBoardTracker(_OpenCVMarkerTracker):
    """Detects a ChArUco board and estimates the pose of the whole board."""

    def __init__(self, config: Optional[Dict] = None):
        super().__init__(config)
        self.board = cv2.aruco.CharucoBoard(
            (self.config.squares_x, self.config.squares_y),
            self.config.square_length,
            self.config.board_marker_length,
            self.dictionary,
        )
        self.detector = cv2.aruco.CharucoDetector(self.board)
        self.charuco_corners: Optional[np.ndarray] = None
        self.charuco_ids: Optional[np.ndarray] = None
        self.board_pose: Optional[Tuple[np.ndarray, np.ndarray]] = None

    def detect(self, image: np.ndarray, surface: Optional[np.ndarray] = None) -> int:
        """Detect board corners in ``image``.

        Returns:
            int: Number of ChArUco corners found
        """
        self._ensure_initialized()
        small, gray, scale = self._prepare(image, surface)

        charuco_corners, charuco_ids, marker_corners, marker_ids = self.detector.detectBoard(gray)
        self.charuco_corners = None
        self.charuco_ids = None
        self.board_pose = None

        if marker_ids is not None and len(marker_ids) > 0:
            cv2.aruco.drawDetectedMarkers(small, marker_corners, marker_ids)

        count = 0 if charuco_ids is None else len(charuco_ids)
        if count > 0:
            # Newer OpenCV releases return flat (N, 2) corners
            charuco_corners = charuco_corners.reshape(-1, 1, 2)
            charuco_ids = charuco_ids.reshape(-1, 1)
            cv2.aruco.drawDetectedCornersCharuco(small, charuco_corners, charuco_ids)
            self.charuco_corners = (charuco_corners * np.array(scale)).astype(np.float32)
            self.charuco_ids = charuco_ids
            self.board_pose = self._solve_board()
            if self.config.draw_axes and self.board_pose is not None:
                self._draw_axes(small, scale, self.board_pose[0], self.board_pose[1], self.config.square_length)

        self._publish(small, surface)
        LOGGER.debug("Detected %d ChArUco corners", count)
        return count

    def _solve_board(self) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        if self.charuco_ids is None or len(self.charuco_ids) < self.config.min_board_corners:
            return None
        object_points, image_points = self.board.matchImagePoints(self.charuco_corners, self.charuco_ids)
        if object_points is None or len(object_points) < self.config.min_board_corners:
            return None
        ok, rvec, tvec = cv2.solvePnP(object_points, image_points, self.camera_matrix, self.dist_coeffs)
        if not ok:
            LOGGER.debug("solvePnP failed for ChArUco board")
            return None
        return rvec, tvec

    def estimate_pose(
        self,
        target_or_registry: Union[SceneObject, MarkerRegistry],
        reference_frame: SceneObject,
    ) -> bool:
        """Place the board target relative to ``reference_frame``.

        Returns:
            bool: True if the target was moved this frame
        """
        self._ensure_initialized()
        if isinstance(target_or_registry, MarkerRegistry):
            raise TypeError("CharucoBoardTracker drives a single target, not a marker registry")
        if self.board_pose is None or target_or_registry is None:
            return False
        board_in_camera = Pose.from_rvec_tvec(*self.board_pose)
        target_or_registry.pose = reference_frame.pose.compose(board_in_camera)
        return True


def create_tracker(tracking_config: Optional[Dict], dist_coeffs: Optional[Sequence[float]] = None):
    """Build the tracker matching ``tracking_config["mode"]``."""
    cfg = dict(tracking_config or {})
    mode = cfg.pop("mode", "markers")
    if dist_coeffs is not None:
        cfg.setdefault("dist_coeffs", list(dist_coeffs))
    if mode == "markers":
        return ArucoMarkerTracker(cfg)
    if mode == "board":
        return CharucoBoardTracker(cfg)
    raise ConfigurationError(f"Unknown tracking mode: {mode}")
