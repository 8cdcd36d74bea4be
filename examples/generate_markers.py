"""
Marker sheet generator for MARKERANCHOR.

Writes printable ArUco markers and a ChArUco board matching the tracking
configuration, so printed targets agree with what the trackers expect.

Usage:
    # Markers 0-3 from the default dictionary
    python generate_markers.py --ids 0 1 2 3 --output ./markers

    # ChArUco board using geometry from a config file
    python generate_markers.py --board --config tracking.json --output ./markers
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List

import cv2

# Add src directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from marker_detect import MarkerTrackingConfiguration, get_dictionary  # type: ignore
from utils import get_config, setup_logging  # type: ignore

LOGGER = logging.getLogger(__name__)


def write_markers(config: MarkerTrackingConfiguration, ids: List[int], output: Path, size_px: int) -> List[Path]:
    """Render each marker id to ``marker_<id>.png``."""
    dictionary = get_dictionary(config.dictionary)
    written = []
    for marker_id in ids:
        image = cv2.aruco.generateImageMarker(dictionary, marker_id, size_px)
        # White quiet zone so the detector finds the outer border
        image = cv2.copyMakeBorder(image, size_px // 8, size_px // 8, size_px // 8, size_px // 8,
                                   cv2.BORDER_CONSTANT, value=255)
        path = output / f"marker_{marker_id}.png"
        cv2.imwrite(str(path), image)
        written.append(path)
        LOGGER.info("Marker %d written to %s", marker_id, path)
    return written


def write_board(config: MarkerTrackingConfiguration, output: Path, size_px: int) -> Path:
    """Render the configured ChArUco board to ``charuco_board.png``."""
    board = cv2.aruco.CharucoBoard(
        (config.squares_x, config.squares_y),
        config.square_length,
        config.board_marker_length,
        get_dictionary(config.dictionary),
    )
    height = int(size_px * config.squares_y / config.squares_x)
    image = board.generateImage((size_px, height), marginSize=size_px // 20)
    path = output / "charuco_board.png"
    cv2.imwrite(str(path), image)
    LOGGER.info("ChArUco board %dx%d written to %s", config.squares_x, config.squares_y, path)
    return path


def main():
    parser = argparse.ArgumentParser(description="Generate printable markers")
    parser.add_argument("--config", type=str, help="Path to JSON configuration file")
    parser.add_argument("--ids", type=int, nargs="*", default=None, help="Marker ids to render")
    parser.add_argument("--board", action="store_true", help="Render the ChArUco board")
    parser.add_argument("--size", type=int, default=600, help="Image width in pixels")
    parser.add_argument("--output", type=str, default="markers", help="Output directory")
    args = parser.parse_args()

    setup_logging()
    config = get_config(args.config)
    tracking = MarkerTrackingConfiguration.from_dict(config.get("tracking"))

    output = Path(args.output)
    output.mkdir(parents=True, exist_ok=True)

    if args.board:
        write_board(tracking, output, args.size)
    else:
        ids = args.ids
        if not ids:
            ids = [int(entry["marker_id"]) for entry in config.get("marker_bindings", [])]
        write_markers(tracking, ids, output, args.size)


if __name__ == "__main__":
    main()
