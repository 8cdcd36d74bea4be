"""
Rigid pose utilities.

Provides the pose container shared by the camera anchor, scene objects and
marker trackers, along with conversion from OpenCV rotation/translation
vectors. Poses use OpenCV's camera axis convention (x right, y down,
z forward).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

import cv2
import numpy as np


@dataclass
class Pose:
    """Position plus orientation (3x3 rotation matrix)."""

    position: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=np.float64))
    rotation: np.ndarray = field(default_factory=lambda: np.eye(3, dtype=np.float64))

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=np.float64).reshape(3)
        self.rotation = np.asarray(self.rotation, dtype=np.float64).reshape(3, 3)

    @classmethod
    def identity(cls) -> Pose:
        return cls()

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> Pose:
        """Build a pose from solvePnP style rotation and translation vectors."""
        rotation, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        return cls(position=np.asarray(tvec, dtype=np.float64).reshape(3), rotation=rotation)

    def as_matrix(self) -> np.ndarray:
        """Return the 4x4 homogeneous transformation matrix."""
        transform = np.eye(4, dtype=np.float64)
        transform[:3, :3] = self.rotation
        transform[:3, 3] = self.position
        return transform

    def rotation_vector(self) -> np.ndarray:
        rvec, _ = cv2.Rodrigues(self.rotation)
        return rvec

    def compose(self, local: Pose) -> Pose:
        """Express ``local`` (given in this pose's frame) in the parent frame."""
        return Pose(
            position=self.rotation @ local.position + self.position,
            rotation=self.rotation @ local.rotation,
        )

    def inverse(self) -> Pose:
        rotation_t = self.rotation.T
        return Pose(position=-rotation_t @ self.position, rotation=rotation_t)

    def copy(self) -> Pose:
        return Pose(position=self.position.copy(), rotation=self.rotation.copy())

    def is_close(self, other: Pose, atol: float = 1e-6) -> bool:
        return bool(
            np.allclose(self.position, other.position, atol=atol)
            and np.allclose(self.rotation, other.rotation, atol=atol)
        )


def pose_from_config(pose_cfg: Optional[Dict]) -> Pose:
    """Build a pose from ``{"position": [...], "rotation_vector": [...]}``."""
    if not pose_cfg:
        return Pose.identity()
    position: Sequence[float] = pose_cfg.get("position", (0.0, 0.0, 0.0))
    rvec: Sequence[float] = pose_cfg.get("rotation_vector", (0.0, 0.0, 0.0))
    return Pose.from_rvec_tvec(np.asarray(rvec, dtype=np.float64), np.asarray(position, dtype=np.float64))
