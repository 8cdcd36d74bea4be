"""
Shared helper functions and utilities.

This module contains logging setup, configuration defaults and the error type
shared by the tracking components.
"""

import copy
import json
import logging
import os


class ConfigurationError(ValueError):
    """Fatal, session-terminal configuration problem."""


def setup_logging(level=logging.INFO):
    """Set up logging configuration.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger = logging.getLogger(__name__)
    logger.info("Logging initialized")


def get_config(config_path=None):
    """Load configuration from file or return defaults.

    Args:
        config_path: Path to configuration file (optional)

    Returns:
        dict: Configuration dictionary
    """
    # Default configuration
    default_config = {
        # Video settings
        'camera_id': 0,
        'video_width': 1280,
        'video_height': 960,
        'video_fps': 30,
        'camera_backend_priority': None,
        'camera_init_attempts': 10,

        # Static camera placement (webcams have no head tracking)
        'camera_pose': {
            'position': [0.0, 0.0, 0.0],
            'rotation_vector': [0.0, 0.0, 0.0],
        },

        # Calibration at the resolution it was measured
        'calibration': {
            'calibration_file': None,  # Optional JSON with camera_matrix/dist_coeffs/image_size
            'camera_matrix': [
                [600.0, 0.0, 320.0],
                [0.0, 600.0, 240.0],
                [0.0, 0.0, 1.0],
            ],
            'dist_coeffs': [0.0, 0.0, 0.0, 0.0, 0.0],
            'reference_resolution': [640, 480],
        },

        # Tracking
        'tracking': {
            'mode': 'markers',  # 'markers' (registry) or 'board' (single target)
            'dictionary': 'DICT_4X4_50',
            'marker_length': 0.05,  # meters
            'downsample_factor': 2,
            'board': {
                'squares_x': 5,
                'squares_y': 7,
                'square_length': 0.04,  # meters
                'marker_length': 0.03,  # meters
            },
        },

        # Scene content
        'objects': {
            'cube': {'parts': ['body', 'edges']},
            'pyramid': {'parts': ['body']},
            'board_content': {'parts': ['body', 'axes']},
        },
        'marker_bindings': [
            {'marker_id': 0, 'object': 'cube'},
            {'marker_id': 1, 'object': 'pyramid'},
        ],
        'board_object': 'board_content',

        # Visualization
        'debug_surface': True,
        'initial_visibility': 'ar',  # 'ar' or 'debug'
        'toggle_key': 'd',
        'axis_length': 0.05,  # meters, used when drawing targets
        'display_width': 1280,
        'display_height': 960,
    }

    # Load from file if provided
    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                loaded_config = json.load(f)
                default_config.update(loaded_config)
                logging.info(f"Configuration loaded from {config_path}")
        except Exception as e:
            logging.warning(f"Failed to load config from {config_path}: {e}")

    return copy.deepcopy(default_config)


def save_config(config, config_path):
    """Save configuration to file.

    Args:
        config: Configuration dictionary
        config_path: Path to save configuration file

    Returns:
        bool: True if save successful, False otherwise
    """
    try:
        with open(config_path, 'w') as f:
            json.dump(config, f, indent=4)
        logging.info(f"Configuration saved to {config_path}")
        return True
    except Exception as e:
        logging.error(f"Failed to save config to {config_path}: {e}")
        return False


def validate_config(config):
    """Validate configuration parameters.

    Args:
        config: Configuration dictionary

    Returns:
        bool: True if valid, False otherwise
    """
    required_keys = ['camera_id', 'video_width', 'video_height', 'tracking']

    for key in required_keys:
        if key not in config:
            logging.error(f"Missing required config key: {key}")
            return False

    # Validate numeric values
    if config['video_width'] <= 0 or config['video_height'] <= 0:
        logging.error("Video dimensions must be positive")
        return False

    mode = config['tracking'].get('mode', 'markers')
    if mode not in ('markers', 'board'):
        logging.error(f"Unknown tracking mode: {mode}")
        return False

    if config.get('initial_visibility', 'ar') not in ('ar', 'debug'):
        logging.error("initial_visibility must be 'ar' or 'debug'")
        return False

    logging.info("Configuration validated successfully")
    return True
