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
Hyperparameter configuration for RBM training.

The configuration is an immutable record validated once at construction.
Unit types, weight decay and sparsity methods are string enums so they can
be given either as enum members or as their names in YAML/JSON files.
"""

from dataclasses import dataclass, asdict, fields
from enum import Enum
from typing import Any, Dict, Optional, Union
import logging

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class UnitType(str, Enum):
    """Activation law of a layer."""

    BINARY = "binary"
    GAUSSIAN = "gaussian"
    RELU = "relu"
    RELU6 = "relu6"
    RELU1 = "relu1"

    @property
    def bound(self) -> Optional[float]:
        """Upper clamp of bounded rectified units, None otherwise."""
        return {UnitType.RELU6: 6.0, UnitType.RELU1: 1.0}.get(self)

    @property
    def is_relu(self) -> bool:
        return self in (UnitType.RELU, UnitType.RELU6, UnitType.RELU1)


class DecayType(str, Enum):
    """Weight decay applied to the gradients."""

    NONE = "none"
    L1 = "l1"
    L2 = "l2"
    L2_FULL = "l2_full"


class SparsityMethod(str, Enum):
    """Sparsity target enforced on the hidden biases."""

    NONE = "none"
    GLOBAL_TARGET = "global_target"
    LOCAL_TARGET = "local_target"


VISIBLE_UNITS = (UnitType.BINARY, UnitType.GAUSSIAN)
HIDDEN_UNITS = (UnitType.BINARY, UnitType.RELU, UnitType.RELU6, UnitType.RELU1)


def _coerce_enum(enum_cls, value: Any, name: str):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        key = value.strip()
        for member in enum_cls:
            if key.lower() == member.value or key.upper() == member.name:
                return member
    raise ConfigurationError(
        f"Invalid {name}: {value!r} (expected one of "
        f"{[m.value for m in enum_cls]})"
    )


@dataclass(frozen=True)
class RBMConfig:
    """
    Resolved training hyperparameters.

    Args:
        visible_unit: Visible unit type (binary or gaussian)
        hidden_unit: Hidden unit type (binary, relu, relu6 or relu1)
        batch_size: Minibatch cardinality
        learning_rate: Step size (defaults to 0.1, or 1e-3 with Gaussian visible units)
        momentum: Whether momentum is used in the update rule
        initial_momentum: Momentum coefficient up to final_momentum_epoch
        final_momentum: Momentum coefficient after final_momentum_epoch
        final_momentum_epoch: Epoch at which the final coefficient kicks in
        weight_decay: Weight decay kind
        weight_cost: Decay coefficient applied to the weights
        bias_cost: Decay coefficient applied to the biases (L2_FULL only,
            defaults to weight_cost)
        sparsity: Sparsity method
        sparsity_target: Desired mean hidden activation
        sparsity_cost: Strength of the sparsity bias correction
        sparsity_decay: Weight of the newest batch in the running activation estimate
        clip_gradients: Whether updates are norm-clipped
        gradient_clip: Maximum L2 norm of each update
        shuffle: Whether samples are shuffled each epoch
        k: Number of Gibbs alternations per CD step
        parallel_mode: Whether samples of a batch are processed by a worker pool
        n_workers: Size of the worker pool (None lets the executor decide)
        divergence_recovery: Whether a snapshot is kept to roll back diverged updates
        gaussian_noise_std: Standard deviation of Gaussian visible sampling
        seed: Seed of the model random generator
    """

    visible_unit: UnitType = UnitType.BINARY
    hidden_unit: UnitType = UnitType.BINARY
    batch_size: int = 25
    learning_rate: Optional[float] = None
    momentum: bool = False
    initial_momentum: float = 0.5
    final_momentum: float = 0.9
    final_momentum_epoch: int = 6
    weight_decay: DecayType = DecayType.NONE
    weight_cost: float = 0.0002
    bias_cost: Optional[float] = None
    sparsity: SparsityMethod = SparsityMethod.NONE
    sparsity_target: float = 0.01
    sparsity_cost: float = 1.0
    sparsity_decay: float = 0.01
    clip_gradients: bool = False
    gradient_clip: float = 5.0
    shuffle: bool = False
    k: int = 1
    parallel_mode: bool = False
    n_workers: Optional[int] = None
    divergence_recovery: bool = False
    gaussian_noise_std: float = 1.0
    seed: Optional[int] = None

    def __post_init__(self):
        # Frozen dataclass: normalized values go through object.__setattr__
        def set_field(name: str, value: Any) -> None:
            object.__setattr__(self, name, value)

        set_field("visible_unit", _coerce_enum(UnitType, self.visible_unit, "visible unit"))
        set_field("hidden_unit", _coerce_enum(UnitType, self.hidden_unit, "hidden unit"))
        set_field("weight_decay", _coerce_enum(DecayType, self.weight_decay, "weight decay"))
        set_field("sparsity", _coerce_enum(SparsityMethod, self.sparsity, "sparsity method"))

        if self.visible_unit not in VISIBLE_UNITS or self.hidden_unit not in HIDDEN_UNITS:
            raise ConfigurationError(
                f"Unsupported unit combination: visible={self.visible_unit.value}, "
                f"hidden={self.hidden_unit.value}"
            )

        if self.learning_rate is None:
            default_lr = 1e-3 if self.visible_unit == UnitType.GAUSSIAN else 1e-1
            set_field("learning_rate", default_lr)
        if self.bias_cost is None:
            set_field("bias_cost", self.weight_cost)

        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")
        if self.k < 1:
            raise ConfigurationError(f"k must be at least 1, got {self.k}")
        if self.learning_rate <= 0:
            raise ConfigurationError(f"learning_rate must be positive, got {self.learning_rate}")
        for name in ("initial_momentum", "final_momentum"):
            value = getattr(self, name)
            if not 0.0 <= value < 1.0:
                raise ConfigurationError(f"{name} must be in [0, 1), got {value}")
        if self.weight_cost < 0 or self.bias_cost < 0:
            raise ConfigurationError("Weight decay coefficients must be non-negative")
        if not 0.0 < self.sparsity_target < 1.0:
            raise ConfigurationError(
                f"sparsity_target must be in (0, 1), got {self.sparsity_target}"
            )
        if not 0.0 < self.sparsity_decay <= 1.0:
            raise ConfigurationError(
                f"sparsity_decay must be in (0, 1], got {self.sparsity_decay}"
            )
        if self.clip_gradients and self.gradient_clip <= 0:
            raise ConfigurationError(f"gradient_clip must be positive, got {self.gradient_clip}")
        if self.n_workers is not None and self.n_workers < 1:
            raise ConfigurationError(f"n_workers must be positive, got {self.n_workers}")
        if self.gaussian_noise_std <= 0:
            raise ConfigurationError("gaussian_noise_std must be positive")

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "RBMConfig":
        """Build a configuration from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration options: {sorted(unknown)}")
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation with enum members replaced by their values."""
        return {
            key: value.value if isinstance(value, Enum) else value
            for key, value in asdict(self).items()
        }

    def replace(self, **changes: Any) -> "RBMConfig":
        """Return a validated copy with some fields changed."""
        values = asdict(self)
        values.update(changes)
        return RBMConfig(**values)


def resolve_config(config: Union[RBMConfig, Dict[str, Any], None]) -> RBMConfig:
    """Accept a config record, a mapping of options, or None for defaults."""
    if config is None:
        return RBMConfig()
    if isinstance(config, RBMConfig):
        return config
    if isinstance(config, dict):
        return RBMConfig.from_dict(config)
    raise ConfigurationError(f"Unsupported configuration type: {type(config).__name__}")
