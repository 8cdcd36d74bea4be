"""
Camera calibration scaling.

Camera intrinsics are measured at a reference resolution, while the stream
that is actually delivered may run at another one. This module rescales the
focal length and principal point so that pose estimation works against the
runtime image.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from utils import ConfigurationError

LOGGER = logging.getLogger(__name__)


def _zero_distortion() -> Tuple[float, ...]:
    return (0.0, 0.0, 0.0, 0.0, 0.0)


@dataclass(frozen=True)
class CameraIntrinsics:
    """Calibration snapshot captured once per session."""

    focal_length: Tuple[float, float]
    principal_point: Tuple[float, float]
    reference_resolution: Tuple[int, int]
    dist_coeffs: Tuple[float, ...] = field(default_factory=_zero_distortion)

    @classmethod
    def from_camera_matrix(
        cls,
        camera_matrix: Sequence[Sequence[float]],
        resolution: Sequence[int],
        dist_coeffs: Optional[Sequence[float]] = None,
    ) -> "CameraIntrinsics":
        matrix = np.asarray(camera_matrix, dtype=np.float64)
        if matrix.shape != (3, 3):
            raise ConfigurationError(f"camera_matrix must be 3x3, got shape {matrix.shape}")
        return cls(
            focal_length=(float(matrix[0, 0]), float(matrix[1, 1])),
            principal_point=(float(matrix[0, 2]), float(matrix[1, 2])),
            reference_resolution=(int(resolution[0]), int(resolution[1])),
            dist_coeffs=_normalize_dist_coeffs(dist_coeffs),
        )


@dataclass(frozen=True)
class ScaledIntrinsics:
    """Intrinsics expressed at the runtime stream resolution."""

    fx: float
    fy: float
    cx: float
    cy: float
    width: int
    height: int
    dist_coeffs: Tuple[float, ...] = field(default_factory=_zero_distortion)

    @property
    def resolution(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def camera_matrix(self) -> np.ndarray:
        """Return the 3x3 pinhole camera matrix."""
        return np.array(
            [
                [self.fx, 0.0, self.cx],
                [0.0, self.fy, self.cy],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )

    def distortion(self) -> np.ndarray:
        return np.asarray(self.dist_coeffs, dtype=np.float64).reshape(-1, 1)


def scale_intrinsics(
    intrinsics: CameraIntrinsics,
    runtime: Tuple[int, int],
) -> ScaledIntrinsics:
    """Rescale intrinsics to the runtime resolution.

    Each axis is scaled independently, so non-uniform resolution changes
    (letterboxing, anamorphic crops) keep reprojection aspect-correct.

    Args:
        intrinsics: Calibration at its reference resolution
        runtime: (width, height) of the delivered stream

    Returns:
        ScaledIntrinsics at the runtime resolution

    Raises:
        ConfigurationError: If the reference resolution has a zero dimension
    """
    fx, fy = intrinsics.focal_length
    cx, cy = intrinsics.principal_point
    ref_width, ref_height = intrinsics.reference_resolution
    width, height = int(runtime[0]), int(runtime[1])

    if ref_width <= 0 or ref_height <= 0:
        raise ConfigurationError(
            f"Reference resolution must be positive, got {ref_width}x{ref_height}"
        )

    LOGGER.info(
        "Camera intrinsics - fx: %.2f, fy: %.2f, cx: %.2f, cy: %.2f, width: %d, height: %d",
        fx, fy, cx, cy, ref_width, ref_height,
    )
    LOGGER.info("Current camera resolution - width: %d, height: %d", width, height)

    if (width, height) != (ref_width, ref_height):
        scale_x = width / ref_width
        scale_y = height / ref_height
        LOGGER.debug("Scaling intrinsics by (%.4f, %.4f)", scale_x, scale_y)
        fx *= scale_x
        fy *= scale_y
        cx *= scale_x
        cy *= scale_y

    return ScaledIntrinsics(
        fx=float(fx),
        fy=float(fy),
        cx=float(cx),
        cy=float(cy),
        width=width,
        height=height,
        dist_coeffs=tuple(intrinsics.dist_coeffs),
    )


def result_surface_shape(scaled: ScaledIntrinsics, downsample_factor: int) -> Tuple[int, int, int]:
    """Shape (rows, cols, channels) of the detector's debug output image."""
    if downsample_factor < 1:
        raise ConfigurationError(f"Downsample factor must be >= 1, got {downsample_factor}")
    return (scaled.height // downsample_factor, scaled.width // downsample_factor, 3)


def load_intrinsics(config: Dict) -> CameraIntrinsics:
    """Build CameraIntrinsics from the ``calibration`` config section.

    A ``calibration_file`` (JSON with camera_matrix, dist_coeffs and image_size) takes
    precedence over inline values.
    """
    calibration_cfg = dict(config.get("calibration", {}))
    calibration_file = calibration_cfg.get("calibration_file")

    if calibration_file:
        calibration_cfg.update(_read_calibration_file(calibration_file))

    camera_matrix = calibration_cfg.get("camera_matrix")
    if camera_matrix is None:
        raise ConfigurationError("Calibration is missing 'camera_matrix'")

    resolution = (
        calibration_cfg.get("reference_resolution")
        or calibration_cfg.get("image_size")
        or (config.get("video_width", 0), config.get("video_height", 0))
    )

    return CameraIntrinsics.from_camera_matrix(
        camera_matrix,
        resolution,
        calibration_cfg.get("dist_coeffs"),
    )


def _read_calibration_file(path: str) -> Dict:
    file_path = Path(path)
    if not file_path.exists():
        raise ConfigurationError(f"Calibration file not found: {file_path}")
    with file_path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _normalize_dist_coeffs(coeffs: Optional[Sequence[float]]) -> Tuple[float, ...]:
    if coeffs is None:
        return _zero_distortion()
    return tuple(float(c) for c in np.asarray(coeffs, dtype=np.float64).flatten())
