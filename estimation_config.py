"""
Configuration management for elastic-net VAR estimation.
"""

import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional, Union

import yaml


@dataclass
class DataConfig:
    """Data-related configuration."""
    input_path: str = "data/panel.csv"
    index_col: Union[int, str] = 0
    standardize: bool = True
    output_dir: str = "output"


@dataclass
class ModelConfig:
    """VAR(p) specification and elastic-net hyperparameters."""
    lags: int = 1
    lam: float = 0.0
    alpha: float = 0.5
    beta: float = 1.0


@dataclass
class ECMConfig:
    """ECM algorithm controls."""
    tol: float = 1e-4
    max_iter: int = 1000
    prerun: int = 2
    verbose: bool = True
    measurement_noise_floor: float = 1e-8


def setup_logging(level: str = "INFO", format_str: Optional[str] = None):
    """Configure logging."""
    if format_str is None:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=format_str
    )


class ConfigManager:
    """Manages configuration for an estimation run."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Parameters
        ----------
        config_path : str, optional
            Path to a YAML configuration file. If None, uses default values.
        """
        self.config_path = config_path
        self.logger = logging.getLogger(__name__)

        if config_path and Path(config_path).exists():
            self._load_from_file(config_path)
        else:
            self._set_defaults()
            if config_path:
                self.logger.warning(f"Config file not found: {config_path}. Using defaults.")

    def _load_from_file(self, config_path: str):
        """Load configuration from YAML file."""
        with open(config_path, 'r') as f:
            config_dict = yaml.safe_load(f) or {}

        self.data = DataConfig(**config_dict.get('data', {}))
        self.model = ModelConfig(**config_dict.get('model', {}))
        self.ecm = ECMConfig(**config_dict.get('ecm', {}))

        log_config = config_dict.get('logging', {})
        self.log_level = log_config.get('level', 'INFO')
        self.log_format = log_config.get('format')

    def _set_defaults(self):
        """Set default configuration values."""
        self.data = DataConfig()
        self.model = ModelConfig()
        self.ecm = ECMConfig()
        self.log_level = 'INFO'
        self.log_format = None

    def setup_logging(self):
        setup_logging(self.log_level, self.log_format)

    def save(self, path: Optional[str] = None):
        """Save configuration to file."""
        save_path = path or self.config_path or "config_saved.yaml"

        config_dict = {
            'data': asdict(self.data),
            'model': asdict(self.model),
            'ecm': asdict(self.ecm),
            'logging': {
                'level': self.log_level,
                'format': self.log_format
            }
        }

        with open(save_path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False)

        self.logger.info(f"Configuration saved to: {save_path}")
        return save_path

    def __repr__(self):
        return f"ConfigManager(config_path='{self.config_path}')"
