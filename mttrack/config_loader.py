#!/usr/bin/env python3
"""
Configuration loader for multi-target tracker runs
Handles YAML parsing, validation, and conversion to tracker parameters
"""

import yaml
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from pathlib import Path
import logging

from .tracking.tracker import TrackerParameters

logger = logging.getLogger(__name__)


@dataclass
class NoiseConfig:
    """Process and measurement noise variances"""
    q_xy: float = 4.0
    q_xy_prev: float = 1.0
    q_size: float = 1.0
    r_xy: float = 1.0
    r_size: float = 1.0


@dataclass
class DomainConfig:
    """Spatial domain and size bounds of the observations"""
    x_min: float = 0.0
    y_min: float = 0.0
    x_max: float = 100.0
    y_max: float = 100.0
    size_min: float = 0.0
    size_max: float = 100.0


@dataclass
class AssociationConfig:
    """Association proposal configuration"""
    proposal: str = 'naive'
    max_num_neighbors: int = 3
    max_dist_neighbors: float = float('inf')


@dataclass
class SamplingConfig:
    """Particle sampling and graph construction configuration"""
    num_particles: int = 100
    ess_percentage: float = 0.5
    random_seed: Optional[int] = None
    num_workers: int = 1
    link_all_track_observations: bool = True
    partition_max_sweeps: int = 10


@dataclass
class TrackerConfig:
    """Complete tracker configuration"""
    name: str
    description: str = ""
    p_detect: float = -1.0
    lambda_birth: float = 0.1
    lambda_clutter: float = 0.0
    lambda_death: float = 0.5
    delta_t: float = 1.0
    model_transition: List[List[float]] = field(
        default_factory=lambda: [[0.9, 0.1], [0.1, 0.9]])
    noise: NoiseConfig = field(default_factory=NoiseConfig)
    domain: DomainConfig = field(default_factory=DomainConfig)
    association: AssociationConfig = field(default_factory=AssociationConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)

    def to_parameters(self) -> TrackerParameters:
        """Convert to the parameter object consumed by the tracker"""
        return TrackerParameters(
            p_detect=self.p_detect,
            lambda_birth=self.lambda_birth,
            lambda_clutter=self.lambda_clutter,
            lambda_death=self.lambda_death,
            delta_t=self.delta_t,
            x_min=self.domain.x_min,
            y_min=self.domain.y_min,
            x_max=self.domain.x_max,
            y_max=self.domain.y_max,
            size_min=self.domain.size_min,
            size_max=self.domain.size_max,
            model_transition=np.array(self.model_transition, dtype=float),
            q_xy=self.noise.q_xy,
            q_xy_prev=self.noise.q_xy_prev,
            q_size=self.noise.q_size,
            r_xy=self.noise.r_xy,
            r_size=self.noise.r_size,
            num_particles=self.sampling.num_particles,
            ess_percentage=self.sampling.ess_percentage,
            proposal=self.association.proposal,
            max_num_neighbors=self.association.max_num_neighbors,
            max_dist_neighbors=self.association.max_dist_neighbors,
            random_seed=self.sampling.random_seed,
            num_workers=self.sampling.num_workers,
            link_all_track_observations=self.sampling.link_all_track_observations,
            partition_max_sweeps=self.sampling.partition_max_sweeps
        )


class ConfigLoader:
    """Load, validate and save tracker configurations"""

    def __init__(self, config_dir: str = "configs"):
        """
        Initialize configuration loader

        Args:
            config_dir: Directory containing configuration files
        """
        self.config_dir = Path(config_dir)

    def load_config(self, config_name: str) -> TrackerConfig:
        """
        Load a tracker configuration from YAML

        Args:
            config_name: Name of a file in the config directory (with or
                without .yaml), or a path to a YAML file

        Returns:
            TrackerConfig object
        """
        filepath = Path(config_name)
        if not filepath.exists():
            if not config_name.endswith('.yaml'):
                config_name += '.yaml'
            filepath = self.config_dir / config_name

        if not filepath.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        logger.info(f"Loading tracker configuration: {filepath}")

        with open(filepath, 'r') as f:
            config_dict = yaml.safe_load(f)

        return self.parse_config(config_dict)

    def parse_config(self, config_dict: Dict[str, Any]) -> TrackerConfig:
        """Parse configuration dictionary into configuration objects"""
        if not isinstance(config_dict, dict) or 'tracker' not in config_dict:
            raise ValueError("Configuration must contain a 'tracker' section")

        tracker_cfg = config_dict['tracker']
        if 'name' not in tracker_cfg:
            raise ValueError("Tracker configuration requires a name")

        noise = NoiseConfig(**self._section(config_dict, 'noise', NoiseConfig))
        domain = DomainConfig(**self._section(config_dict, 'domain', DomainConfig))
        association = AssociationConfig(**self._section(config_dict, 'association',
                                                        AssociationConfig))
        sampling = SamplingConfig(**self._section(config_dict, 'sampling', SamplingConfig))

        return TrackerConfig(
            name=tracker_cfg['name'],
            description=tracker_cfg.get('description', ''),
            p_detect=float(tracker_cfg.get('p_detect', -1.0)),
            lambda_birth=float(tracker_cfg.get('lambda_birth', 0.1)),
            lambda_clutter=float(tracker_cfg.get('lambda_clutter', 0.0)),
            lambda_death=float(tracker_cfg.get('lambda_death', 0.5)),
            delta_t=float(tracker_cfg.get('delta_t', 1.0)),
            model_transition=tracker_cfg.get('model_transition', [[0.9, 0.1], [0.1, 0.9]]),
            noise=noise,
            domain=domain,
            association=association,
            sampling=sampling
        )

    @staticmethod
    def _section(config_dict: Dict[str, Any], name: str, config_class) -> Dict[str, Any]:
        """Extract a section, rejecting keys the section does not know"""
        section = config_dict.get(name) or {}
        known = set(config_class.__dataclass_fields__)
        unknown = set(section) - known
        if unknown:
            raise ValueError(f"Unknown keys in '{name}' section: {sorted(unknown)}")
        return section

    def list_configs(self) -> List[str]:
        """List available configuration files"""
        return sorted(f.stem for f in self.config_dir.glob("*.yaml"))

    def validate_config(self, config: TrackerConfig) -> List[str]:
        """
        Validate tracker configuration

        Returns:
            List of validation warnings/errors
        """
        warnings = []

        try:
            config.to_parameters().validate()
        except ValueError as e:
            warnings.append(f"Invalid parameter: {e}")

        transition = np.array(config.model_transition, dtype=float)
        if transition.ndim != 2 or transition.shape[0] != transition.shape[1]:
            warnings.append("Model transition matrix must be square")
        elif not np.allclose(transition.sum(axis=0), 1.0):
            warnings.append("Model transition matrix columns should sum to 1")

        if config.p_detect < 0:
            warnings.append("Detection probability will be estimated from the data")
        if config.lambda_clutter == 0:
            warnings.append("Clutter rate will be estimated from the data")

        if config.association.proposal not in ('naive', 'neighbors', 'nn'):
            warnings.append(f"Unknown association proposal: {config.association.proposal}")

        if config.sampling.num_particles < 10:
            warnings.append("Fewer than 10 particles give unreliable association votes")

        if config.sampling.random_seed is None:
            warnings.append("No random seed set, runs will not be reproducible")

        return warnings

    def save_config(self, config: TrackerConfig, filename: str) -> Path:
        """Save tracker configuration to YAML file"""

        if not filename.endswith('.yaml'):
            filename += '.yaml'

        self.config_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.config_dir / filename

        config_dict = {
            'tracker': {
                'name': config.name,
                'description': config.description,
                'p_detect': config.p_detect,
                'lambda_birth': config.lambda_birth,
                'lambda_clutter': config.lambda_clutter,
                'lambda_death': config.lambda_death,
                'delta_t': config.delta_t,
                'model_transition': [[float(v) for v in row] for row in config.model_transition]
            },
            'noise': vars(config.noise).copy(),
            'domain': vars(config.domain).copy(),
            'association': vars(config.association).copy(),
            'sampling': vars(config.sampling).copy()
        }

        with open(filepath, 'w') as f:
            yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Saved tracker configuration to {filepath}")
        return filepath


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    loader = ConfigLoader()

    print("Available configurations:")
    for name in loader.list_configs():
        print(f"  - {name}")

    try:
        config = loader.load_config("tracker_default")
        print(f"\nLoaded configuration: {config.name}")
        print(f"Particles: {config.sampling.num_particles}")

        warnings = loader.validate_config(config)
        if warnings:
            print("\nValidation warnings:")
            for warning in warnings:
                print(f"  - {warning}")
        else:
            print("\nConfiguration validation passed!")

    except FileNotFoundError as e:
        print(f"Error: {e}")
