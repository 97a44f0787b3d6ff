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
Weight update rule applied after every minibatch.

Given the averaged contrastive-divergence gradients, the update goes through:
1. weight decay (L1, L2, or L2 on weights and biases)
2. learning rate and momentum
3. norm clipping of each delta
4. sparsity correction of the hidden biases
5. in-place application to W, b and c, with rollback on non-finite results
"""

from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple
import torch
import logging

from ..config import DecayType, RBMConfig, SparsityMethod
from ..exceptions import NumericDivergenceError
from ..models.rbm import RestrictedBoltzmannMachine
from ..models.utils import clip_gradients

logger = logging.getLogger(__name__)

PARAMETER_NAMES = ("W", "h_bias", "v_bias")


@dataclass
class Gradients:
    """Log-likelihood ascent directions for W, b (h_bias) and c (v_bias)."""

    W: torch.Tensor
    h_bias: torch.Tensor
    v_bias: torch.Tensor

    def items(self) -> Iterator[Tuple[str, torch.Tensor]]:
        for name in PARAMETER_NAMES:
            yield name, getattr(self, name)

    def scale(self, factor: float) -> "Gradients":
        return Gradients(W=self.W * factor, h_bias=self.h_bias * factor, v_bias=self.v_bias * factor)

    def is_finite(self) -> bool:
        return all(torch.isfinite(g).all() for _, g in self.items())


def apply_weight_decay(
    grads: Gradients,
    model: RestrictedBoltzmannMachine,
    decay: DecayType,
    weight_cost: float,
    bias_cost: Optional[float] = None,
) -> Gradients:
    """
    Subtract the weight decay penalty from the gradients.

    Args:
        grads: Averaged gradients
        model: Model holding the current parameters
        decay: Kind of decay
        weight_cost: Coefficient applied to W
        bias_cost: Coefficient applied to the biases with L2_FULL (defaults to weight_cost)

    Returns:
        New gradients with the penalty applied
    """
    if decay == DecayType.NONE:
        return grads
    if bias_cost is None:
        bias_cost = weight_cost

    if decay == DecayType.L1:
        return Gradients(
            W=grads.W - weight_cost * torch.sign(model.W),
            h_bias=grads.h_bias,
            v_bias=grads.v_bias,
        )

    w_grad = grads.W - weight_cost * model.W
    if decay == DecayType.L2_FULL:
        return Gradients(
            W=w_grad,
            h_bias=grads.h_bias - bias_cost * model.h_bias,
            v_bias=grads.v_bias - bias_cost * model.v_bias,
        )
    return Gradients(W=w_grad, h_bias=grads.h_bias, v_bias=grads.v_bias)


def momentum_coefficient(config: RBMConfig, epoch: int) -> float:
    """Momentum in use at a (0-based) epoch, 0 when momentum is disabled."""
    if not config.momentum:
        return 0.0
    if epoch >= config.final_momentum_epoch:
        return config.final_momentum
    return config.initial_momentum


class WeightUpdateRule:
    """Turns averaged gradients into parameter updates."""

    def __init__(self, config: RBMConfig):
        self.config = config
        self.learning_rate = config.learning_rate

    def compute_deltas(
        self,
        model: RestrictedBoltzmannMachine,
        grads: Gradients,
        epoch: int = 0,
    ) -> Dict[str, torch.Tensor]:
        """
        Weight decay, learning rate, momentum and clipping.

        Momentum buffers on the model are updated with the returned deltas.
        """
        config = self.config
        grads = apply_weight_decay(
            grads, model, config.weight_decay, config.weight_cost, config.bias_cost
        )
        momentum = momentum_coefficient(config, epoch)

        deltas = {}
        for name, grad in grads.items():
            delta = self.learning_rate * grad
            if config.momentum:
                previous = model.momentum_buffers.get(name)
                if previous is not None:
                    delta = momentum * previous + delta
            if config.clip_gradients:
                delta = clip_gradients(delta, config.gradient_clip)
            if config.momentum:
                model.momentum_buffers[name] = delta
            deltas[name] = delta
        return deltas

    def sparsity_correction(
        self,
        model: RestrictedBoltzmannMachine,
        hidden_mean: torch.Tensor,
    ) -> Optional[torch.Tensor]:
        """
        Update the running activation estimate and return the hidden bias correction.

        Args:
            model: Model holding the running estimate q
            hidden_mean: Mean activation of each hidden unit over the batch

        Returns:
            Correction to add to the hidden bias delta, or None without sparsity
        """
        config = self.config
        if config.sparsity == SparsityMethod.NONE:
            return None

        if config.sparsity == SparsityMethod.GLOBAL_TARGET:
            batch_q = hidden_mean.mean()
        else:
            batch_q = hidden_mean

        if model.sparsity_q is None:
            model.sparsity_q = batch_q.detach().clone()
        else:
            decay = config.sparsity_decay
            model.sparsity_q = (1.0 - decay) * model.sparsity_q + decay * batch_q

        penalty = config.sparsity_cost * (config.sparsity_target - model.sparsity_q)
        return self.learning_rate * penalty * torch.ones_like(model.h_bias)

    def apply(
        self,
        model: RestrictedBoltzmannMachine,
        grads: Gradients,
        hidden_mean: Optional[torch.Tensor] = None,
        epoch: int = 0,
    ) -> Dict[str, torch.Tensor]:
        """
        Update the model parameters in place.

        Args:
            model: Model to update
            grads: Averaged positive-minus-negative gradients
            hidden_mean: Mean positive-phase hidden activation per unit (for sparsity)
            epoch: Current epoch (for the momentum schedule)

        Returns:
            The deltas added to each parameter

        Raises:
            NumericDivergenceError: If a parameter becomes NaN or Inf
        """
        deltas = self.compute_deltas(model, grads, epoch)

        if hidden_mean is not None:
            correction = self.sparsity_correction(model, hidden_mean)
            if correction is not None:
                deltas["h_bias"] = deltas["h_bias"] + correction

        if self.config.divergence_recovery:
            model.backup_parameters()

        for name, delta in deltas.items():
            getattr(model, name).data.add_(delta)

        if not model.parameters_finite():
            restored = model.restore_backup()
            if not restored:
                model.corrupted = True
            logger.error(f"Parameters diverged at epoch {epoch + 1}")
            raise NumericDivergenceError("Non-finite parameters after update", restored=restored)

        return deltas
