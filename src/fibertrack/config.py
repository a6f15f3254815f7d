"""
Tracking configuration

Defaults for every tracking parameter, optionally overridden by a JSON
file. Command-line options override both.
"""

import copy
import json
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

logger = logging.getLogger(__name__)

DEFAULT_TRACKING_CONFIG: Dict[str, Any] = {
    'max_steps': 2000,
    'step_length': 0.5,
    'inner_product_threshold': 0.2,
    'reference_vector': None,
    'streamlines_per_seed': 1,
    'jitter': False,
    'loopcheck': False,
    'terminate_targets': False,
    'terminate_outside': False,
    'must_leave': False,
    'min_target_hits': 0,
    'min_length': 0.0,
    'avf_threshold': 0.05,
    'block_size': None,
    'median_quantile': 0.99,
    'endianness': None,
    'random_seed': None,
}


def load_tracking_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load tracking configuration

    Args:
        path: JSON file with overrides (None = defaults only)

    Returns:
        Complete configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_TRACKING_CONFIG)
    if path is None:
        return config

    logger.info(f"Loading configuration from {path}")
    with open(path, 'r') as f:
        overrides = json.load(f)

    if not isinstance(overrides, dict):
        raise ValueError(f"Configuration file {path} must contain a JSON object")

    unknown = sorted(set(overrides) - set(DEFAULT_TRACKING_CONFIG))
    if unknown:
        raise ValueError(f"Unknown configuration keys in {path}: {unknown}")

    config.update(overrides)
    return config
