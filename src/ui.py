"""
User interface module.

This module handles keyboard input and the display window: either the
detector's debug surface or the camera frame with the tracked targets drawn
as axes, depending on the active visibility mode.
"""

import logging
from typing import Iterable, Optional, Set

import cv2
import numpy as np

from calibration import ScaledIntrinsics
from scene import DebugSurface, SceneObject

QUIT_KEYS = (ord('q'), 27)  # 'q' or ESC


def _key_code(button_id) -> int:
    if isinstance(button_id, str):
        return ord(button_id[0])
    return int(button_id)


class KeyboardInput:
    """Discrete key input with press-edge semantics.

    ``poll()`` is called once per tick; ``edge_down`` reports a key only on
    the tick it was read. A key repeated on consecutive polls is held, not
    pressed again.
    """

    def __init__(self):
        self._pressed: Set[int] = set()
        self._last_key = 0xFF

    def poll(self, key: Optional[int] = None) -> int:
        """Read one key event (or inject ``key``) for this tick."""
        if key is None:
            key = cv2.waitKey(1) & 0xFF
        held = key == self._last_key
        self._last_key = key
        self._pressed = set() if key == 0xFF or held else {key}
        return key

    def edge_down(self, button_id) -> bool:
        return _key_code(button_id) in self._pressed

    def quit_requested(self) -> bool:
        return any(key in self._pressed for key in QUIT_KEYS)


class UserInterface:
    """Display window using OpenCV."""

    def __init__(self, config=None):
        """Initialize user interface.

        Args:
            config: Configuration dictionary
        """
        self.config = config or {}
        self.logger = logging.getLogger(__name__)

        # Window settings
        self.window_name = "MARKERANCHOR"
        self.display_width = self.config.get('display_width', 1280)
        self.display_height = self.config.get('display_height', 960)
        self.axis_length = self.config.get('axis_length', 0.05)
        self.toggle_key = self.config.get('toggle_key', 'd')

        self.input = KeyboardInput()

    def initialize(self):
        """Initialize user interface.

        Returns:
            bool: True if initialization successful, False otherwise
        """
        try:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            cv2.resizeWindow(self.window_name, self.display_width, self.display_height)
            self.logger.info(f"UI initialized: {self.display_width}x{self.display_height}")
            return True
        except cv2.error as e:
            self.logger.error(f"UI initialization failed: {e}")
            return False

    def handle_events(self):
        """Poll keyboard input.

        Returns:
            bool: True to continue running, False to exit
        """
        self.input.poll()
        if self.input.quit_requested():
            self.logger.info("User requested exit")
            return False
        if self.input.edge_down('h'):
            self._print_help()
        return True

    def render(
        self,
        frame: Optional[np.ndarray],
        debug_surface: Optional[DebugSurface],
        targets: Iterable[SceneObject],
        anchor: SceneObject,
        intrinsics: Optional[ScaledIntrinsics],
        status: str = "",
    ) -> Optional[np.ndarray]:
        """Compose the displayed image.

        Returns:
            np.ndarray or None: The image that was shown
        """
        if debug_surface is not None and debug_surface.enabled and debug_surface.image is not None:
            canvas = cv2.resize(debug_surface.image, (self.display_width, self.display_height),
                                interpolation=cv2.INTER_NEAREST)
        elif frame is not None:
            canvas = frame.copy()
            if intrinsics is not None:
                self._draw_targets(canvas, targets, anchor, intrinsics)
        else:
            return None

        self._add_status_text(canvas, status)
        cv2.imshow(self.window_name, canvas)
        return canvas

    def _draw_targets(self, canvas, targets, anchor, intrinsics):
        """Project every visible target into the current camera view."""
        world_to_camera = anchor.pose.inverse()
        for target in targets:
            if target is None or not target.is_visible:
                continue
            in_camera = world_to_camera.compose(target.pose)
            if in_camera.position[2] <= 0:
                continue
            cv2.drawFrameAxes(
                canvas,
                intrinsics.camera_matrix(),
                intrinsics.distortion(),
                in_camera.rotation_vector(),
                in_camera.position.reshape(3, 1),
                self.axis_length,
            )
            origin, _ = cv2.projectPoints(
                np.zeros((1, 3)),
                in_camera.rotation_vector(),
                in_camera.position.reshape(3, 1),
                intrinsics.camera_matrix(),
                intrinsics.distortion(),
            )
            x, y = origin.reshape(2)
            cv2.putText(canvas, target.name, (int(x) + 5, int(y) - 5),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 255, 255), 1, cv2.LINE_AA)

    def _add_status_text(self, frame, status):
        font = cv2.FONT_HERSHEY_SIMPLEX
        color = (0, 255, 0)  # Green
        cv2.putText(frame, f"'{self.toggle_key}' toggles debug view, 'h' help, 'q' quit", (10, 20),
                    font, 0.5, color, 1)
        if status:
            cv2.putText(frame, status, (10, 40), font, 0.5, color, 1)

    def _print_help(self):
        """Print help information to console."""
        help_text = f"""
        MARKERANCHOR Controls:
        ======================
        q / ESC - Quit application
        {self.toggle_key}       - Toggle detector debug view / AR content
        h       - Show this help
        """
        print(help_text)

    def cleanup(self):
        """Clean up UI resources."""
        try:
            cv2.destroyAllWindows()
            self.logger.info("UI cleaned up")
        except cv2.error as e:
            self.logger.error(f"UI cleanup error: {e}")
