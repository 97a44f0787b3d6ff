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
Sampling and numerical helpers shared by the models and the trainer

This module provides:
- Bernoulli and Gaussian sampling with an optional random generator
- Logistic and ranged noise for rectified linear units
- Finiteness checks that turn NaN/Inf into a training error
- Gradient clipping by norm
"""

from typing import List, Optional, Union
import torch
import logging

from ..exceptions import NumericDivergenceError

logger = logging.getLogger(__name__)


def _normal_like(x: torch.Tensor, generator: Optional[torch.Generator] = None) -> torch.Tensor:
    return torch.randn(x.shape, generator=generator, device=x.device, dtype=x.dtype)


def sample_bernoulli(
    probs: torch.Tensor,
    generator: Optional[torch.Generator] = None
) -> torch.Tensor:
    """
    Sample from Bernoulli distribution.

    Args:
        probs: Bernoulli probabilities
        generator: Random generator (global generator if None)

    Returns:
        samples: Binary samples with the same shape as probs
    """
    return torch.bernoulli(probs, generator=generator)


def sample_gaussian(
    mean: torch.Tensor,
    std: Union[float, torch.Tensor] = 1.0,
    generator: Optional[torch.Generator] = None
) -> torch.Tensor:
    """
    Sample from Gaussian distribution.

    Args:
        mean: Mean values
        std: Standard deviation (scalar or broadcastable tensor)
        generator: Random generator (global generator if None)

    Returns:
        samples: Gaussian samples
    """
    return mean + _normal_like(mean, generator) * std


def logistic_noise(
    x: torch.Tensor,
    generator: Optional[torch.Generator] = None
) -> torch.Tensor:
    """Add zero-mean Gaussian noise of variance sigmoid(x) (noisy rectified units)."""
    return x + _normal_like(x, generator) * torch.sqrt(torch.sigmoid(x))


def ranged_noise(
    x: torch.Tensor,
    bound: float,
    generator: Optional[torch.Generator] = None
) -> torch.Tensor:
    """Add unit Gaussian noise where 0 < x < bound, leave saturated values untouched."""
    inside = (x > 0) & (x < bound)
    return torch.where(inside, x + _normal_like(x, generator), x)


def check_finite(tensor: torch.Tensor, name: str) -> torch.Tensor:
    """
    Raise NumericDivergenceError if tensor holds NaN or Inf.

    Args:
        tensor: Tensor to check
        name: Name used in the error message

    Returns:
        The tensor itself, for chaining
    """
    if not torch.isfinite(tensor).all():
        n_bad = int((~torch.isfinite(tensor)).sum().item())
        raise NumericDivergenceError(f"{n_bad} non-finite values in {name}")
    return tensor


def clip_gradients(
    gradients: Union[torch.Tensor, List[torch.Tensor]],
    max_norm: float = 5.0,
    norm_type: float = 2.0
) -> Union[torch.Tensor, List[torch.Tensor]]:
    """
    Clip gradients by norm.

    Args:
        gradients: Single gradient tensor or list of gradient tensors
        max_norm: Maximum gradient norm
        norm_type: Type of norm to use

    Returns:
        clipped_gradients: Clipped gradients (same type as input)
    """
    if isinstance(gradients, torch.Tensor):
        grad_norm = torch.norm(gradients, norm_type)
        if grad_norm > max_norm:
            return gradients * (max_norm / grad_norm)
        return gradients

    elif isinstance(gradients, list):
        # List of tensors share one global norm
        parameters = [g for g in gradients if g is not None]

        if len(parameters) == 0:
            return gradients

        total_norm = torch.norm(
            torch.stack([torch.norm(p, norm_type) for p in parameters]),
            norm_type
        )

        if total_norm > max_norm:
            clip_coef = max_norm / total_norm
            return [p * clip_coef if p is not None else None for p in gradients]

        return gradients

    else:
        raise ValueError(f"Unsupported gradient type: {type(gradients)}")
