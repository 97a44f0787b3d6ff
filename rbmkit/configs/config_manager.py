# Copyright 2025 rbmkit Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Configuration file management for rbmkit.

Loads YAML or JSON experiment files, applies dotted-key overrides and
environment variable substitution, validates the result against a JSON
schema and turns it into an RBMConfig and a model.

Usage:
    from rbmkit.configs import ConfigManager

    config = ConfigManager.load('crbm_mnist.yaml',
                                overrides={'training.learning_rate': 0.02})
    rbm_config = ConfigManager.build_config(config)
    model = ConfigManager.build_model(config)
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union
import copy
import json
import logging
import os

import yaml
from jsonschema import validate, ValidationError

from ..config import DecayType, RBMConfig, SparsityMethod, UnitType
from ..exceptions import ConfigurationError
from ..models.crbm import ConvolutionalRBM
from ..models.rbm import RestrictedBoltzmannMachine

logger = logging.getLogger(__name__)

# Keys of the training section that drive the loop rather than the RBMConfig
LOOP_KEYS = ("epochs",)


def _names(enum_cls):
    return [member.value for member in enum_cls]


class ConfigManager:
    """Configuration management for RBM training runs."""

    CONFIG_SCHEMA = {
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "description": {"type": "string"},
            "model": {
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": ["rbm", "crbm"]},
                    "architecture": {"type": "object"}
                },
                "required": ["type", "architecture"]
            },
            "training": {
                "type": "object",
                "properties": {
                    "visible_unit": {"type": "string", "enum": _names(UnitType)},
                    "hidden_unit": {"type": "string", "enum": _names(UnitType)},
                    "batch_size": {"type": "integer", "minimum": 1},
                    "learning_rate": {"type": "number", "exclusiveMinimum": 0},
                    "momentum": {"type": "boolean"},
                    "initial_momentum": {"type": "number", "minimum": 0, "exclusiveMaximum": 1},
                    "final_momentum": {"type": "number", "minimum": 0, "exclusiveMaximum": 1},
                    "final_momentum_epoch": {"type": "integer", "minimum": 0},
                    "weight_decay": {"type": "string", "enum": _names(DecayType)},
                    "weight_cost": {"type": "number", "minimum": 0},
                    "bias_cost": {"type": "number", "minimum": 0},
                    "sparsity": {"type": "string", "enum": _names(SparsityMethod)},
                    "sparsity_target": {"type": "number", "exclusiveMinimum": 0, "exclusiveMaximum": 1},
                    "sparsity_cost": {"type": "number", "minimum": 0},
                    "sparsity_decay": {"type": "number", "exclusiveMinimum": 0, "maximum": 1},
                    "clip_gradients": {"type": "boolean"},
                    "gradient_clip": {"type": "number", "exclusiveMinimum": 0},
                    "divergence_recovery": {"type": "boolean"},
                    "gaussian_noise_std": {"type": "number", "exclusiveMinimum": 0},
                    "shuffle": {"type": "boolean"},
                    "k": {"type": "integer", "minimum": 1},
                    "parallel_mode": {"type": "boolean"},
                    "n_workers": {"type": "integer", "minimum": 1},
                    "epochs": {"type": "integer", "minimum": 1},
                    "seed": {"type": "integer"}
                }
            }
        },
        "required": ["model", "training"]
    }

    @classmethod
    def load(
        cls,
        config_path: Union[str, Path],
        overrides: Optional[Dict[str, Any]] = None,
        validate_config: bool = True
    ) -> Dict[str, Any]:
        """
        Load configuration with optional overrides.

        Args:
            config_path: Path to configuration file
            overrides: Dictionary of dotted-key parameter overrides
            validate_config: Whether to validate the configuration

        Returns:
            Loaded and processed configuration dictionary
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            if config_path.suffix.lower() in ['.yaml', '.yml']:
                config = yaml.safe_load(f)
            elif config_path.suffix.lower() == '.json':
                config = json.load(f)
            else:
                raise ValueError(f"Unsupported config format: {config_path.suffix}")

        logger.info(f"Loaded configuration from {config_path}")

        if overrides:
            config = cls._apply_overrides(config, overrides)
            logger.info(f"Applied {len(overrides)} parameter overrides")

        config = cls._substitute_env_vars(config)

        if validate_config:
            cls.validate(config)

        return config

    @classmethod
    def validate(cls, config: Dict[str, Any]) -> None:
        """
        Validate configuration against schema.

        Raises:
            ValidationError: If configuration is invalid
        """
        try:
            validate(instance=config, schema=cls.CONFIG_SCHEMA)
            logger.debug("Configuration validation passed")
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e.message}")
            raise

    @classmethod
    def build_config(cls, config: Dict[str, Any]) -> RBMConfig:
        """Turn the training section into a validated RBMConfig."""
        training = {
            key: value for key, value in config.get('training', {}).items()
            if key not in LOOP_KEYS
        }
        return RBMConfig.from_dict(training)

    @classmethod
    def build_model(
        cls,
        config: Dict[str, Any],
        **kwargs: Any
    ) -> RestrictedBoltzmannMachine:
        """
        Build the model described by the model section.

        Args:
            config: Loaded configuration
            **kwargs: Extra model arguments (device, dtype)

        Returns:
            A RestrictedBoltzmannMachine or ConvolutionalRBM
        """
        model_config = config['model']
        architecture = dict(model_config.get('architecture', {}))
        rbm_config = cls.build_config(config)

        try:
            if model_config['type'] == 'crbm':
                return ConvolutionalRBM(config=rbm_config, **architecture, **kwargs)
            return RestrictedBoltzmannMachine(config=rbm_config, **architecture, **kwargs)
        except TypeError as e:
            raise ConfigurationError(f"Invalid architecture {architecture}: {e}") from e

    @classmethod
    def save(
        cls,
        config: Dict[str, Any],
        output_path: Union[str, Path],
        format: str = 'yaml'
    ) -> None:
        """
        Save configuration to file.

        Args:
            config: Configuration dictionary to save
            output_path: Output file path
            format: Output format ('yaml' or 'json')
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w') as f:
            if format.lower() == 'yaml':
                yaml.dump(config, f, default_flow_style=False, indent=2)
            elif format.lower() == 'json':
                json.dump(config, f, indent=2)
            else:
                raise ValueError(f"Unsupported format: {format}")

        logger.info(f"Saved configuration to {output_path}")

    @classmethod
    def merge(cls, *configs: Dict[str, Any]) -> Dict[str, Any]:
        """Merge multiple configurations with deep merging, later ones winning."""
        if not configs:
            return {}

        result = copy.deepcopy(configs[0])
        for config in configs[1:]:
            result = cls._deep_merge(result, config)
        return result

    @staticmethod
    def _apply_overrides(config: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
        """Apply parameter overrides using dot notation."""
        result = copy.deepcopy(config)

        for key, value in overrides.items():
            ConfigManager._set_nested_value(result, key, value)

        return result

    @staticmethod
    def _substitute_env_vars(config: Dict[str, Any]) -> Dict[str, Any]:
        """Substitute ${VAR} and ${VAR:default} references, parsed as YAML scalars."""
        def substitute_recursive(obj):
            if isinstance(obj, dict):
                return {k: substitute_recursive(v) for k, v in obj.items()}
            elif isinstance(obj, list):
                return [substitute_recursive(item) for item in obj]
            elif isinstance(obj, str) and obj.startswith('${') and obj.endswith('}'):
                env_var = obj[2:-1]
                default_value = None
                if ':' in env_var:
                    env_var, default_value = env_var.split(':', 1)
                value = os.getenv(env_var, default_value)
                return yaml.safe_load(value) if value is not None else None
            else:
                return obj

        return substitute_recursive(config)

    @staticmethod
    def _deep_merge(dict1: Dict[str, Any], dict2: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = copy.deepcopy(dict1)

        for key, value in dict2.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = ConfigManager._deep_merge(result[key], value)
            else:
                result[key] = copy.deepcopy(value)

        return result

    @staticmethod
    def _set_nested_value(config: Dict[str, Any], key_path: str, value: Any) -> None:
        """Set nested value using dot notation."""
        keys = key_path.split('.')
        current = config

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value


def load_config(config_path: Union[str, Path], **kwargs) -> Dict[str, Any]:
    """Convenience function to load configuration."""
    return ConfigManager.load(config_path, **kwargs)
