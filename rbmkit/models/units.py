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
Unit activation laws.

Maps a pre-activation tensor to activation probabilities and, optionally, a
stochastic sample, for each supported unit type:

- binary: a = sigmoid(x), s ~ Bernoulli(a)
- gaussian: a = x, s = a + N(0, sigma)
- relu: a = max(x, 0), s = max(x + N(0, sigmoid(x)), 0)
- relu6 / relu1: a = clamp(x, 0, bound), s = clamp(x + ranged noise, 0, bound)
"""

from typing import Optional, Tuple
import torch

from ..config import UnitType
from ..exceptions import ConfigurationError
from .utils import (
    check_finite,
    logistic_noise,
    ranged_noise,
    sample_bernoulli,
    sample_gaussian,
)


def activation_probabilities(x: torch.Tensor, unit: UnitType) -> torch.Tensor:
    """Deterministic activation (probabilities or means) of a pre-activation."""
    if unit == UnitType.BINARY:
        return torch.sigmoid(x)
    if unit == UnitType.GAUSSIAN:
        return x
    if unit == UnitType.RELU:
        return torch.clamp(x, min=0.0)
    if unit.bound is not None:
        return torch.clamp(x, 0.0, unit.bound)
    raise ConfigurationError(f"Unknown unit type: {unit}")


def sample_units(
    x: torch.Tensor,
    probs: torch.Tensor,
    unit: UnitType,
    generator: Optional[torch.Generator] = None,
    noise_std: float = 1.0,
) -> torch.Tensor:
    """
    Draw a sample of the units.

    Args:
        x: Pre-activation (used by the rectified families)
        probs: Activation probabilities computed from x
        unit: Unit type
        generator: Random generator
        noise_std: Standard deviation of Gaussian unit noise

    Returns:
        Sampled unit states
    """
    if unit == UnitType.BINARY:
        return sample_bernoulli(probs, generator)
    if unit == UnitType.GAUSSIAN:
        return sample_gaussian(probs, noise_std, generator)
    if unit == UnitType.RELU:
        return torch.clamp(logistic_noise(x, generator), min=0.0)
    if unit.bound is not None:
        return torch.clamp(ranged_noise(x, unit.bound, generator), 0.0, unit.bound)
    raise ConfigurationError(f"Unknown unit type: {unit}")


def activate(
    x: torch.Tensor,
    unit: UnitType,
    probs: bool = True,
    sample: bool = True,
    generator: Optional[torch.Generator] = None,
    noise_std: float = 1.0,
    name: str = "activations",
) -> Tuple[Optional[torch.Tensor], Optional[torch.Tensor]]:
    """
    Activate a layer from its pre-activation.

    Args:
        x: Pre-activation tensor
        unit: Unit type of the layer
        probs: Whether to compute activation probabilities
        sample: Whether to draw a stochastic sample
        generator: Random generator for sampling
        noise_std: Standard deviation of Gaussian unit noise
        name: Layer name used in error messages

    Returns:
        a: Activation probabilities (None if probs is False)
        s: Sampled states (None if sample is False)

    Raises:
        ConfigurationError: If a sample is requested without probabilities
        NumericDivergenceError: If any output is NaN or Inf
    """
    if sample and not probs:
        raise ConfigurationError("Sampling without computing probabilities is not supported")
    if not probs:
        return None, None

    a = check_finite(activation_probabilities(x, unit), f"{name} probabilities")
    s = None
    if sample:
        s = check_finite(
            sample_units(x, a, unit, generator=generator, noise_std=noise_std),
            f"{name} samples",
        )
    return a, s
