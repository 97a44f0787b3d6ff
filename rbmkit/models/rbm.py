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
Restricted Boltzmann Machine with pluggable weight structure

This module implements the RBM entity shared by the dense and convolutional
variants:
- Model parameters W, hidden bias b and visible bias c
- Unit activation in both directions for every supported unit combination
- Energy and free energy evaluation
- Momentum, sparsity and backup state used by the trainer
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union
import torch
import torch.nn as nn
import torch.nn.functional as F
import numpy as np
import logging

from ..config import RBMConfig, UnitType, resolve_config
from ..exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    UnsupportedOperationError,
)
from .transforms import DenseTransform, Transform, per_sample_sum
from .units import activate
from .utils import check_finite

logger = logging.getLogger(__name__)


@dataclass
class ParameterSnapshot:
    """Copy of the model parameters used to roll back a diverged update."""

    W: torch.Tensor
    h_bias: torch.Tensor
    v_bias: torch.Tensor

    @classmethod
    def capture(cls, model: "RestrictedBoltzmannMachine") -> "ParameterSnapshot":
        return cls(
            W=model.W.detach().clone(),
            h_bias=model.h_bias.detach().clone(),
            v_bias=model.v_bias.detach().clone(),
        )

    def restore(self, model: "RestrictedBoltzmannMachine") -> None:
        model.W.data.copy_(self.W)
        model.h_bias.data.copy_(self.h_bias)
        model.v_bias.data.copy_(self.v_bias)


class RestrictedBoltzmannMachine(nn.Module):
    """
    Restricted Boltzmann Machine.

    The weight structure is provided by a Transform: a DenseTransform gives the
    standard RBM, a ConvTransform the convolutional RBM. Unit types and all
    training hyperparameters come from an RBMConfig.
    """

    # Standard deviation of the initial weights
    weight_init_std = 0.1

    def __init__(
        self,
        n_visible: Optional[int] = None,
        n_hidden: Optional[int] = None,
        config: Union[RBMConfig, Dict[str, Any], None] = None,
        transform: Optional[Transform] = None,
        device: Optional[torch.device] = None,
        dtype: torch.dtype = torch.float32,
    ):
        """
        Initialize Restricted Boltzmann Machine.

        Args:
            n_visible: Number of visible units (dense form)
            n_hidden: Number of hidden units (dense form)
            config: Training configuration (RBMConfig, mapping or None for defaults)
            transform: Weight structure; built from n_visible/n_hidden if None
            device: Device to place tensors on
            dtype: Data type for tensors
        """
        super().__init__()

        if transform is None:
            if n_visible is None or n_hidden is None:
                raise ConfigurationError("n_visible and n_hidden are required without a transform")
            transform = DenseTransform(n_visible, n_hidden)

        self.transform = transform
        self.config = resolve_config(config)
        self.visible_type = self.config.visible_unit
        self.hidden_type = self.config.hidden_unit
        self.device = device or torch.device('cpu')
        self.dtype = dtype

        self.generator: Optional[torch.Generator] = None
        if self.config.seed is not None:
            self.generator = torch.Generator(device=self.device)
            self.generator.manual_seed(self.config.seed)

        self._init_parameters()
        self.to(self.device)

        # Training state, reset at the start of every training session
        self.momentum_buffers: Dict[str, torch.Tensor] = {}
        self.sparsity_q: Optional[torch.Tensor] = None
        self.backup: Optional[ParameterSnapshot] = None
        self.corrupted = False

    def _init_parameters(self) -> None:
        """Gaussian weights, zero biases."""
        W = torch.randn(
            self.transform.weight_shape, generator=self.generator,
            device=self.device, dtype=self.dtype,
        ) * self.weight_init_std
        self.W = nn.Parameter(W, requires_grad=False)
        self.h_bias = nn.Parameter(
            torch.zeros(self.transform.n_hidden_units, dtype=self.dtype), requires_grad=False
        )
        self.v_bias = nn.Parameter(
            torch.zeros(self.transform.n_visible_units, dtype=self.dtype), requires_grad=False
        )

    @property
    def visible_shape(self) -> Tuple[int, ...]:
        return self.transform.visible_shape

    @property
    def hidden_shape(self) -> Tuple[int, ...]:
        return self.transform.hidden_shape

    @property
    def n_visible(self) -> int:
        return int(np.prod(self.visible_shape))

    @property
    def n_hidden(self) -> int:
        return int(np.prod(self.hidden_shape))

    def prepare_input(self, data: Any) -> torch.Tensor:
        """
        Convert samples to a visible batch and validate their shape.

        Accepts a single sample or a batch, as a tensor, an array or a
        sequence of vectors. Flat vectors are reshaped to the visible shape
        when their size matches.

        Raises:
            DimensionMismatchError: If the samples do not fit the visible layer
        """
        if isinstance(data, torch.Tensor):
            v = data
        elif isinstance(data, (list, tuple)) and len(data) > 0 and isinstance(data[0], torch.Tensor):
            v = torch.stack(list(data))
        else:
            v = torch.as_tensor(np.asarray(data))
        v = v.to(self.device, dtype=self.dtype)

        shape = tuple(self.visible_shape)
        if tuple(v.shape) == shape:
            return v.unsqueeze(0)
        if v.dim() == len(shape) + 1 and tuple(v.shape[1:]) == shape:
            return v
        if v.dim() == 1 and v.numel() == self.n_visible:
            return v.reshape((1,) + shape)
        if v.dim() == 2 and v.shape[1] == self.n_visible:
            return v.reshape((v.shape[0],) + shape)
        raise DimensionMismatchError(shape, v.shape[1:] if v.dim() > 1 else v.shape)

    def visible_to_hidden(
        self,
        v: torch.Tensor,
        probs: bool = True,
        sample: bool = True,
    ) -> Tuple[Optional[torch.Tensor], Optional[torch.Tensor]]:
        """
        Compute hidden unit probabilities and sample from them.

        Args:
            v: Visible unit states [batch_size, *visible_shape]
            probs: Whether to compute probabilities
            sample: Whether to sample (requires probs)

        Returns:
            h_prob: Hidden unit probabilities [batch_size, *hidden_shape]
            h_sample: Hidden unit samples, or None if not requested
        """
        pre = self.transform.forward(v, self.W, self.h_bias)
        return activate(
            pre, self.hidden_type, probs=probs, sample=sample,
            generator=self.generator, name="hidden",
        )

    def hidden_to_visible(
        self,
        h: torch.Tensor,
        probs: bool = True,
        sample: bool = True,
    ) -> Tuple[Optional[torch.Tensor], Optional[torch.Tensor]]:
        """
        Compute visible unit probabilities and sample from them.

        Args:
            h: Hidden unit states [batch_size, *hidden_shape]
            probs: Whether to compute probabilities (means for Gaussian units)
            sample: Whether to sample (requires probs)

        Returns:
            v_prob: Visible unit probabilities/means [batch_size, *visible_shape]
            v_sample: Visible unit samples, or None if not requested
        """
        pre = self.transform.backward(h, self.W, self.v_bias)
        return activate(
            pre, self.visible_type, probs=probs, sample=sample,
            generator=self.generator, noise_std=self.config.gaussian_noise_std,
            name="visible",
        )

    def _visible_energy_term(self, v: torch.Tensor) -> torch.Tensor:
        if self.visible_type == UnitType.GAUSSIAN:
            c_rep = self.transform.expand_visible_bias(self.v_bias)
            # +sum((v - c)^2) / 2, so the Gaussian energy is bounded below in v
            return 0.5 * per_sample_sum((v - c_rep) ** 2)
        return -self.transform.visible_bias_term(v, self.v_bias)

    def _require_closed_form(self, what: str) -> None:
        if self.hidden_type != UnitType.BINARY:
            raise UnsupportedOperationError(
                f"{what} has no closed form for visible={self.visible_type.value}, "
                f"hidden={self.hidden_type.value}"
            )

    def energy(self, v: Any, h: torch.Tensor) -> torch.Tensor:
        """
        Compute the energy of a visible-hidden configuration.

        Binary visible: E(v,h) = -c.v - b.h - h.(W*v)
        Gaussian visible: E(v,h) = sum((v-c)^2)/2 - b.h - h.(W*v)

        Args:
            v: Visible unit states (one sample or a batch)
            h: Hidden unit states matching v

        Returns:
            energy: Energy values [batch_size]

        Raises:
            UnsupportedOperationError: For non-binary hidden units
            NumericDivergenceError: If the energy is not finite
        """
        self._require_closed_form("Energy")
        v = self.prepare_input(v)
        h = h.to(self.device, dtype=self.dtype).reshape((v.shape[0],) + tuple(self.hidden_shape))

        pre = self.transform.forward(v, self.W)
        energy = (
            self._visible_energy_term(v)
            - self.transform.hidden_bias_term(h, self.h_bias)
            - self.transform.interaction(h, pre)
        )
        return check_finite(energy, "energy")

    def free_energy(self, v: Any) -> torch.Tensor:
        """
        Compute the free energy of visible units.

        F(v) = -c.v - sum(log(1 + exp(b + W*v))), with sum((v-c)^2)/2 in
        place of -c.v for Gaussian visible units.

        Args:
            v: Visible unit states (one sample or a batch)

        Returns:
            free_energy: Free energy values [batch_size]
        """
        self._require_closed_form("Free energy")
        v = self.prepare_input(v)

        hidden_activation = self.transform.forward(v, self.W, self.h_bias)
        hidden_term = -per_sample_sum(F.softplus(hidden_activation))

        free_energy = self._visible_energy_term(v) + hidden_term
        return check_finite(free_energy, "free energy")

    def gibbs_step(self, v: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Perform one step of Gibbs sampling.

        Args:
            v: Current visible states [batch_size, *visible_shape]

        Returns:
            v_new: New visible states
            h_prob: Hidden probabilities
            h_sample: Hidden samples
            v_prob: Visible probabilities
        """
        h_prob, h_sample = self.visible_to_hidden(v)
        v_prob, v_new = self.hidden_to_visible(h_sample)
        return v_new, h_prob, h_sample, v_prob

    def reconstruct(self, v_data: Any, n_gibbs: int = 1) -> torch.Tensor:
        """
        Reconstruct data using the model.

        Args:
            v_data: Input data (one sample or a batch)
            n_gibbs: Number of Gibbs steps for reconstruction

        Returns:
            reconstruction: Visible probabilities after the last step
        """
        v = self.prepare_input(v_data)
        v_prob = v
        for _ in range(n_gibbs):
            v, _, _, v_prob = self.gibbs_step(v)
        return v_prob

    def reconstruction_error(self, v_data: Any, n_gibbs: int = 1) -> float:
        """Mean squared error between the data and its reconstruction."""
        v = self.prepare_input(v_data)
        return torch.mean((v - self.reconstruct(v, n_gibbs=n_gibbs)) ** 2).item()

    def sample(self, n_samples: int, n_gibbs: int = 1000, init_visible: Optional[Any] = None) -> torch.Tensor:
        """
        Generate samples from the model using Gibbs sampling.

        Args:
            n_samples: Number of samples to generate
            n_gibbs: Number of Gibbs steps to run
            init_visible: Initial visible state (if None, random initialization)

        Returns:
            samples: Generated samples [n_samples, *visible_shape]
        """
        shape = (n_samples,) + tuple(self.visible_shape)
        if init_visible is None:
            if self.visible_type == UnitType.BINARY:
                v = torch.bernoulli(
                    torch.full(shape, 0.5, device=self.device, dtype=self.dtype),
                    generator=self.generator,
                )
            else:
                v = torch.randn(shape, generator=self.generator, device=self.device, dtype=self.dtype)
        else:
            v = self.prepare_input(init_visible)

        for _ in range(n_gibbs):
            v, _, _, _ = self.gibbs_step(v)
        return v

    def get_hidden_representation(self, v_data: Any) -> torch.Tensor:
        """
        Get hidden activation probabilities of visible data.

        Args:
            v_data: One sample or a batch

        Returns:
            h_prob: Hidden probabilities, without the batch axis for a single sample
        """
        single = tuple(np.shape(v_data)) in (tuple(self.visible_shape), (self.n_visible,))
        v = self.prepare_input(v_data)
        h_prob, _ = self.visible_to_hidden(v, sample=False)
        return h_prob[0] if single else h_prob

    def backup_parameters(self) -> ParameterSnapshot:
        """Snapshot W, b and c for divergence recovery."""
        self.backup = ParameterSnapshot.capture(self)
        return self.backup

    def restore_backup(self) -> bool:
        """Restore the last snapshot; returns False if there is none."""
        if self.backup is None:
            return False
        self.backup.restore(self)
        self.corrupted = False
        return True

    def parameters_finite(self) -> bool:
        return all(torch.isfinite(p).all() for p in (self.W, self.h_bias, self.v_bias))

    def reset_training_state(self) -> None:
        """Clear momentum, sparsity and backup state for a fresh training session."""
        self.momentum_buffers = {}
        self.sparsity_q = None
        self.backup = None
        self.corrupted = False

    def fit(self, dataset: Any, epochs: int, **kwargs) -> float:
        """
        Train with contrastive divergence; returns the final reconstruction error.

        Keyword arguments are forwarded to TrainingLoop.
        """
        from ..training.loop import TrainingLoop

        return TrainingLoop(self, **kwargs).train(dataset, epochs)

    def fit_denoising(self, noisy: Any, clean: Any, epochs: int, **kwargs) -> float:
        """Train from corrupted inputs against clean targets; returns the final error."""
        from ..training.loop import TrainingLoop

        return TrainingLoop(self, **kwargs).train_denoising(noisy, clean, epochs)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"{type(self).__name__}("
            f"transform={self.transform!r}, "
            f"visible_type='{self.visible_type.value}', "
            f"hidden_type='{self.hidden_type.value}')"
        )
