"""
Main entry point for the MARKERANCHOR application.

Runs the marker tracking loop against a webcam or a video file.

Usage:
    python main.py                          # Run with defaults
    python main.py --config tracking.json   # Load configuration
    python main.py --mode board             # Track a ChArUco board
    python main.py --verbose                # Enable debug logging
"""

from __future__ import annotations

import argparse
import logging
import sys

from coordinator import MarkerTrackingCoordinator
from marker_detect import create_tracker
from ui import UserInterface
from utils import ConfigurationError, get_config, setup_logging, validate_config
from video import CameraStream

LOGGER = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="MARKERANCHOR - ArUco/ChArUco marker tracking with anchored AR content",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                        # Track ArUco markers on camera 0
  python main.py --mode board           # Track a ChArUco board
  python main.py --video clip.mp4       # Replay a recording

Controls:
  d      - Toggle detector debug view / AR content
  H      - Print help
  Q      - Quit
        """,
    )

    parser.add_argument("--config", "-c", type=str, help="Path to JSON configuration file")
    parser.add_argument("--camera", type=int, help="Camera index (overrides config)")
    parser.add_argument("--video", type=str, help="Play a video file instead of a camera")
    parser.add_argument(
        "--mode",
        choices=("markers", "board"),
        help="Tracking mode (overrides config)",
    )
    parser.add_argument(
        "--verbose", "-V",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    return parser.parse_args(argv)


def run(config) -> int:
    """Run the host tick loop until the user quits.

    Returns:
        int: Process exit code
    """
    camera = CameraStream(config)
    ui = UserInterface(config)

    tracking_cfg = config.get('tracking', {})
    detector = create_tracker(tracking_cfg, camera.intrinsics().dist_coeffs)
    coordinator = MarkerTrackingCoordinator.from_config(config, camera, detector, ui.input)

    try:
        opened = camera.load_video_file(config['video_file']) if config.get('video_file') else camera.open()
        if not opened:
            return 1
        if not ui.initialize():
            return 1

        while True:
            camera.update()
            if not ui.handle_events():
                break

            coordinator.tick()

            status = f"{coordinator.state.name} | {coordinator.visibility_state.name}"
            ui.render(
                camera.current_image(),
                coordinator.debug_surface,
                coordinator.bound_targets(),
                coordinator.anchor,
                coordinator.scaled_intrinsics,
                status,
            )
    finally:
        LOGGER.info("Frame statistics: %s", coordinator.stats.to_dict())
        camera.cleanup()
        ui.cleanup()

    return 0


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(level=log_level)

    LOGGER.info("Starting MARKERANCHOR...")

    config = get_config(args.config)
    if args.camera is not None:
        config['camera_id'] = args.camera
    if args.video:
        config['video_file'] = args.video
    if args.mode:
        config['tracking']['mode'] = args.mode

    if not validate_config(config):
        sys.exit(1)

    try:
        exit_code = run(config)
    except ConfigurationError as e:
        LOGGER.error("Configuration error: %s", e)
        sys.exit(1)
    except Exception as e:
        LOGGER.exception("Application error: %s", e)
        sys.exit(1)

    LOGGER.info("MARKERANCHOR exited normally")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
