import yaml
from pathlib import Path
from typing import Dict, Any, Optional


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the YAML configuration file.

    The peak detection options live in its ``wavelet_peaks`` section, with
    the detector tuning nested under ``wavelet_peaks.cwt``; see
    ``PeakDetectionSettings.from_config``.

    Args:
        config_path: Optional explicit path to the configuration file. If None,
                     load `config.yaml` from the `config` package directory.

    Returns:
        A dictionary containing the configuration settings. An empty file
        yields an empty dictionary.
    """
    if config_path is None:
        path = Path(__file__).resolve().parent / "config.yaml"
    else:
        path = Path(config_path)

    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found at: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping at the top level")

    return config
