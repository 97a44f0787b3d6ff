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
Contrastive divergence (CD-k) trainer.

For every minibatch the trainer runs, per sample:
- positive phase: hidden activation from the observed (or corrupted) visible
- Gibbs chain: k alternations hidden sample -> visible reconstruction -> hidden
- negative phase: the final reconstruction and its hidden activation
- gradient accumulation: <v_pos h_pos> - <v_neg h_neg> and bias moments

The averaged gradients are then handed to the WeightUpdateRule. In parallel
mode the samples of a batch are split over a bounded thread pool; every
worker fills its own accumulator and the partials are merged afterwards.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Tuple
import os
import torch
import numpy as np
import logging

from ..config import RBMConfig
from ..exceptions import DimensionMismatchError
from ..models.rbm import RestrictedBoltzmannMachine
from .update import Gradients, WeightUpdateRule

logger = logging.getLogger(__name__)


class CDPhase(Enum):
    """Position of the trainer in the contrastive divergence step."""

    INIT = "init"
    POSITIVE_PHASE = "positive_phase"
    GIBBS_CHAIN = "gibbs_chain"
    NEGATIVE_PHASE = "negative_phase"
    GRADIENT_ACCUM = "gradient_accum"
    DONE = "done"


@dataclass
class TrainingContext:
    """
    Scratch buffers of a training session.

    v1 is the visible input, h1 the positive hidden activation, v2/h2 the
    visible and hidden states at the end of the Gibbs chain; _a buffers hold
    probabilities and _s buffers samples. Allocated once per session for the
    configured batch size; short batches use the leading rows.
    """

    v1: torch.Tensor
    h1_a: torch.Tensor
    h1_s: torch.Tensor
    v2_a: torch.Tensor
    v2_s: torch.Tensor
    h2_a: torch.Tensor
    h2_s: torch.Tensor

    @classmethod
    def allocate(
        cls,
        batch_size: int,
        visible_shape: Tuple[int, ...],
        hidden_shape: Tuple[int, ...],
        device: torch.device,
        dtype: torch.dtype,
    ) -> "TrainingContext":
        def empty(shape):
            return torch.zeros((batch_size,) + tuple(shape), device=device, dtype=dtype)

        return cls(
            v1=empty(visible_shape),
            h1_a=empty(hidden_shape),
            h1_s=empty(hidden_shape),
            v2_a=empty(visible_shape),
            v2_s=empty(visible_shape),
            h2_a=empty(hidden_shape),
            h2_s=empty(hidden_shape),
        )

    @property
    def capacity(self) -> int:
        return self.v1.shape[0]

    def rows(self, start: int, stop: int) -> "TrainingContext":
        """View on a contiguous range of samples."""
        return TrainingContext(
            v1=self.v1[start:stop],
            h1_a=self.h1_a[start:stop],
            h1_s=self.h1_s[start:stop],
            v2_a=self.v2_a[start:stop],
            v2_s=self.v2_s[start:stop],
            h2_a=self.h2_a[start:stop],
            h2_s=self.h2_s[start:stop],
        )


class GradientAccumulator:
    """Running sums of the CD statistics over a set of samples."""

    def __init__(self, model: RestrictedBoltzmannMachine):
        self.W = torch.zeros_like(model.W)
        self.h_bias = torch.zeros_like(model.h_bias)
        self.v_bias = torch.zeros_like(model.v_bias)
        self.hidden_sum = torch.zeros_like(model.h_bias)
        self.squared_error = 0.0
        self.n_samples = 0
        self.n_visible = model.n_visible

    def merge(self, other: "GradientAccumulator") -> "GradientAccumulator":
        self.W += other.W
        self.h_bias += other.h_bias
        self.v_bias += other.v_bias
        self.hidden_sum += other.hidden_sum
        self.squared_error += other.squared_error
        self.n_samples += other.n_samples
        return self

    def gradients(self) -> Gradients:
        """Statistics averaged over the accumulated samples."""
        n = max(self.n_samples, 1)
        return Gradients(W=self.W / n, h_bias=self.h_bias / n, v_bias=self.v_bias / n)

    @property
    def hidden_mean(self) -> torch.Tensor:
        return self.hidden_sum / max(self.n_samples, 1)

    @property
    def reconstruction_error(self) -> float:
        return self.squared_error / max(self.n_samples * self.n_visible, 1)


@dataclass
class BatchResult:
    """Outcome of one minibatch."""

    gradients: Gradients
    reconstruction_error: float
    hidden_mean: torch.Tensor
    n_samples: int


class ContrastiveDivergenceTrainer:
    """
    CD-k trainer for RBMs and CRBMs.

    The trainer only reads W/b/c while computing statistics; all writes go
    through its WeightUpdateRule once the batch reduction is complete.
    """

    def __init__(self, model: RestrictedBoltzmannMachine, config: Optional[RBMConfig] = None):
        """
        Initialize the trainer.

        Args:
            model: Model to train
            config: Training configuration (defaults to the model's)
        """
        self.model = model
        self.config = config or model.config
        self.update_rule = WeightUpdateRule(self.config)
        self.phase = CDPhase.INIT
        self.context: Optional[TrainingContext] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def n_workers(self) -> int:
        if self.config.n_workers is not None:
            return self.config.n_workers
        return min(self.config.batch_size, os.cpu_count() or 1)

    def start_session(self) -> None:
        """Allocate the training context and reset momentum, sparsity and backup state."""
        self.model.reset_training_state()
        self._allocate(self.config.batch_size)
        if self.config.parallel_mode and self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.n_workers, thread_name_prefix="cd-worker"
            )
        self.phase = CDPhase.INIT
        logger.debug(
            f"Training session started: batch_size={self.config.batch_size}, "
            f"k={self.config.k}, parallel={self.config.parallel_mode}"
        )

    def end_session(self) -> None:
        """Release the worker pool and the scratch buffers."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self.context = None
        self.phase = CDPhase.DONE

    def _allocate(self, batch_size: int) -> None:
        self.context = TrainingContext.allocate(
            batch_size,
            self.model.visible_shape,
            self.model.hidden_shape,
            self.model.device,
            self.model.dtype,
        )

    def _set_phase(self, phase: CDPhase, track: bool) -> None:
        if track:
            self.phase = phase

    def _run_chain(
        self,
        ctx: TrainingContext,
        v_input: torch.Tensor,
        v_target: torch.Tensor,
        track: bool = True,
    ) -> GradientAccumulator:
        """Run the CD-k step for a group of samples and accumulate their statistics."""
        model = self.model
        transform = model.transform

        self._set_phase(CDPhase.POSITIVE_PHASE, track)
        ctx.v1.copy_(v_input)
        h1_a, h1_s = model.visible_to_hidden(ctx.v1)
        ctx.h1_a.copy_(h1_a)
        ctx.h1_s.copy_(h1_s)

        self._set_phase(CDPhase.GIBBS_CHAIN, track)
        h_s = ctx.h1_s
        for _ in range(self.config.k):
            v2_a, v2_s = model.hidden_to_visible(h_s)
            ctx.v2_a.copy_(v2_a)
            ctx.v2_s.copy_(v2_s)
            h2_a, h2_s = model.visible_to_hidden(ctx.v2_a)
            ctx.h2_a.copy_(h2_a)
            ctx.h2_s.copy_(h2_s)
            h_s = ctx.h2_s

        self._set_phase(CDPhase.NEGATIVE_PHASE, track)
        v_neg, h_neg = ctx.v2_a, ctx.h2_a

        self._set_phase(CDPhase.GRADIENT_ACCUM, track)
        acc = GradientAccumulator(model)
        acc.W += transform.weight_statistic(v_target, ctx.h1_a) - transform.weight_statistic(v_neg, h_neg)
        acc.h_bias += transform.hidden_statistic(ctx.h1_a) - transform.hidden_statistic(h_neg)
        acc.v_bias += transform.visible_statistic(v_target) - transform.visible_statistic(v_neg)
        acc.hidden_sum += transform.hidden_statistic(ctx.h1_a)
        acc.squared_error = torch.sum((v_target - v_neg) ** 2).item()
        acc.n_samples = v_input.shape[0]
        return acc

    def compute_gradients(self, batch: Any, clean: Optional[Any] = None) -> BatchResult:
        """
        Run the CD-k step on a batch without touching the parameters.

        Args:
            batch: Visible batch (corrupted inputs when training denoising)
            clean: Clean targets matching batch, for denoising training

        Returns:
            BatchResult with averaged gradients and the reconstruction error

        Raises:
            DimensionMismatchError: If the batch or targets do not match the model
        """
        v_input = self.model.prepare_input(batch)
        if clean is None:
            v_target = v_input
        else:
            v_target = self.model.prepare_input(clean)
            if v_target.shape != v_input.shape:
                raise DimensionMismatchError(v_input.shape, v_target.shape)

        n = v_input.shape[0]
        if self.context is None or self.context.capacity < n:
            self._allocate(max(n, self.config.batch_size))

        if self.config.parallel_mode and n > 1:
            acc = self._parallel_chains(v_input, v_target)
        else:
            acc = self._run_chain(self.context.rows(0, n), v_input, v_target)

        self.phase = CDPhase.DONE
        return BatchResult(
            gradients=acc.gradients(),
            reconstruction_error=acc.reconstruction_error,
            hidden_mean=acc.hidden_mean,
            n_samples=acc.n_samples,
        )

    def _parallel_chains(self, v_input: torch.Tensor, v_target: torch.Tensor) -> GradientAccumulator:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.n_workers, thread_name_prefix="cd-worker"
            )

        n = v_input.shape[0]
        splits = [chunk for chunk in np.array_split(np.arange(n), min(self.n_workers, n)) if len(chunk)]
        futures = []
        for chunk in splits:
            start, stop = int(chunk[0]), int(chunk[-1]) + 1
            futures.append(self._executor.submit(
                self._run_chain,
                self.context.rows(start, stop),
                v_input[start:stop],
                v_target[start:stop],
                False,
            ))

        # Reduction after the parallel region
        partials: List[GradientAccumulator] = [future.result() for future in futures]
        self.phase = CDPhase.GRADIENT_ACCUM
        total = GradientAccumulator(self.model)
        for partial in partials:
            total.merge(partial)
        return total

    def train_batch(self, batch: Any, clean: Optional[Any] = None, epoch: int = 0) -> BatchResult:
        """
        Run CD-k on a batch and update the model.

        Args:
            batch: Visible batch
            clean: Clean targets for denoising training
            epoch: Current epoch (for the momentum schedule)

        Returns:
            BatchResult of the batch

        Raises:
            NumericDivergenceError: If activations or parameters become non-finite
        """
        result = self.compute_gradients(batch, clean)
        self.update_rule.apply(self.model, result.gradients, result.hidden_mean, epoch)
        return result
