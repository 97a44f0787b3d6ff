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
Epoch loop driving contrastive divergence training

This module provides the batch driver for RBMs and CRBMs:
- Optional full shuffle of the sample order every epoch
- Contiguous minibatches (the last one may be short)
- Denoising training from corrupted inputs against clean targets
- Callbacks and caller-supplied stop conditions
- Per-epoch reconstruction error tracking and logging
"""

from typing import Any, Callable, Dict, List, Optional, Union
import torch
import logging
import time
from tqdm import tqdm

from ..config import RBMConfig, resolve_config
from ..exceptions import ConfigurationError, DimensionMismatchError
from ..models.rbm import RestrictedBoltzmannMachine
from .callbacks import Callback
from .trainer import ContrastiveDivergenceTrainer

logger = logging.getLogger(__name__)

StopCondition = Callable[[int, Dict[str, float]], bool]


class TrainingLoop:
    """
    Training loop for restricted Boltzmann machines.

    Iterates epochs over an in-memory dataset, drives the contrastive
    divergence trainer per minibatch and aggregates the reconstruction error.
    """

    def __init__(
        self,
        model: RestrictedBoltzmannMachine,
        config: Union[RBMConfig, Dict[str, Any], None] = None,
        callbacks: Optional[List[Callback]] = None,
        log_interval: int = 10,
        show_progress: bool = False,
    ):
        """
        Initialize training loop.

        Args:
            model: Boltzmann machine model to train
            config: Training configuration (defaults to the model's)
            callbacks: List of training callbacks
            log_interval: Interval (batches) between batch callbacks
            show_progress: Whether to display a progress bar
        """
        self.model = model
        self.config = resolve_config(config) if config is not None else model.config
        self.callbacks = callbacks or []
        self.log_interval = max(1, log_interval)
        self.show_progress = show_progress
        self.trainer = ContrastiveDivergenceTrainer(model, self.config)

        self.shuffle_generator: Optional[torch.Generator] = None
        if self.config.seed is not None:
            self.shuffle_generator = torch.Generator()
            self.shuffle_generator.manual_seed(self.config.seed)

        # Training state
        self.current_epoch = 0
        self.global_step = 0
        self.training_history: Dict[str, List[float]] = {
            'reconstruction_error': [],
            'epoch_time': []
        }

        logger.info(f"Training loop initialized for {type(model).__name__}")

    def _batches(self, n_samples: int) -> List[torch.Tensor]:
        """Index tensors of the minibatches of one epoch."""
        if self.config.shuffle:
            order = torch.randperm(n_samples, generator=self.shuffle_generator)
        else:
            order = torch.arange(n_samples)
        return list(torch.split(order, self.config.batch_size))

    def train_epoch(
        self,
        epoch: int,
        data: torch.Tensor,
        clean: Optional[torch.Tensor] = None,
    ) -> Dict[str, float]:
        """
        Train for one epoch.

        Args:
            epoch: Current epoch number
            data: Visible samples [n_samples, *visible_shape]
            clean: Clean targets for denoising training

        Returns:
            metrics: Dictionary of training metrics
        """
        epoch_metrics = {
            'reconstruction_error': 0.0,
            'hidden_activation': 0.0,
            'n_batches': 0
        }
        n_seen = 0

        epoch_start_time = time.time()

        batches = self._batches(data.shape[0])
        pbar = tqdm(
            batches,
            desc=f"Epoch {epoch+1}",
            disable=not (self.show_progress and logger.isEnabledFor(logging.INFO))
        )

        for batch_idx, indices in enumerate(pbar):
            batch = data[indices]
            target = clean[indices] if clean is not None else None

            for callback in self.callbacks:
                callback.on_batch_begin(batch=batch_idx, logs={}, model=self.model)

            result = self.trainer.train_batch(batch, target, epoch=epoch)

            # Sample-weighted epoch means
            epoch_metrics['reconstruction_error'] += result.reconstruction_error * result.n_samples
            epoch_metrics['hidden_activation'] += result.hidden_mean.mean().item() * result.n_samples
            epoch_metrics['n_batches'] += 1
            n_seen += result.n_samples
            self.global_step += 1

            if batch_idx % self.log_interval == 0:
                current_error = epoch_metrics['reconstruction_error'] / n_seen
                pbar.set_postfix({'error': f'{current_error:.4f}'})

                batch_logs = {
                    'reconstruction_error': result.reconstruction_error,
                    'n_samples': result.n_samples
                }
                for callback in self.callbacks:
                    callback.on_batch_end(batch=batch_idx, logs=batch_logs, model=self.model)

        epoch_metrics['reconstruction_error'] /= n_seen
        epoch_metrics['hidden_activation'] /= n_seen
        epoch_metrics['weight_norm'] = torch.norm(self.model.W).item()
        epoch_metrics['epoch_time'] = time.time() - epoch_start_time

        return epoch_metrics

    def _prepare(self, dataset: Any) -> torch.Tensor:
        if isinstance(dataset, (list, tuple)) and len(dataset) == 0:
            raise ConfigurationError("Cannot train on an empty dataset")
        data = self.model.prepare_input(dataset)
        if data.shape[0] == 0:
            raise ConfigurationError("Cannot train on an empty dataset")
        return data

    def train(
        self,
        dataset: Any,
        epochs: int,
        stop_condition: Optional[StopCondition] = None,
    ) -> float:
        """
        Main training loop.

        Args:
            dataset: Ordered samples (tensor, array or sequence of vectors)
            epochs: Number of epochs to train
            stop_condition: Called as stop_condition(epoch, logs) after every
                epoch; training stops when it returns True

        Returns:
            Reconstruction error of the last epoch
        """
        return self._fit(self._prepare(dataset), None, epochs, stop_condition)

    def train_denoising(
        self,
        noisy: Any,
        clean: Any,
        epochs: int,
        stop_condition: Optional[StopCondition] = None,
    ) -> float:
        """
        Denoising training: corrupted inputs drive the positive phase and the
        clean samples are the reconstruction targets.

        Returns:
            Reconstruction error against the clean samples in the last epoch
        """
        noisy_data = self._prepare(noisy)
        clean_data = self._prepare(clean)
        if noisy_data.shape != clean_data.shape:
            raise DimensionMismatchError(noisy_data.shape, clean_data.shape)
        return self._fit(noisy_data, clean_data, epochs, stop_condition)

    def _fit(
        self,
        data: torch.Tensor,
        clean: Optional[torch.Tensor],
        epochs: int,
        stop_condition: Optional[StopCondition],
    ) -> float:
        if epochs < 1:
            raise ConfigurationError(f"epochs must be positive, got {epochs}")

        logger.info(
            f"Starting training for {epochs} epochs on {data.shape[0]} samples"
            + (" (denoising)" if clean is not None else "")
        )

        self.trainer.start_session()
        for callback in self.callbacks:
            callback.on_train_begin(logs={}, model=self.model)

        try:
            for epoch in range(epochs):
                self.current_epoch = epoch

                for callback in self.callbacks:
                    callback.on_epoch_begin(epoch=epoch, logs={}, model=self.model)

                epoch_logs = self.train_epoch(epoch, data, clean)

                for key, value in epoch_logs.items():
                    if key not in self.training_history:
                        self.training_history[key] = []
                    self.training_history[key].append(value)

                logger.info(
                    f"Epoch {epoch+1}/{epochs}"
                    f" - reconstruction_error: {epoch_logs['reconstruction_error']:.5f}"
                    f" - time: {epoch_logs['epoch_time']:.2f}s"
                )

                for callback in self.callbacks:
                    callback.on_epoch_end(epoch=epoch, logs=epoch_logs, model=self.model)

                if stop_condition is not None and stop_condition(epoch, epoch_logs):
                    logger.info(f"Stop condition reached after epoch {epoch+1}")
                    break

                stopper = next((cb for cb in self.callbacks if cb.should_stop()), None)
                if stopper is not None:
                    logger.info(f"Early stopping triggered by {type(stopper).__name__}")
                    break

        except KeyboardInterrupt:
            logger.info("Training interrupted by user")

        except Exception as e:
            logger.error(f"Training failed with error: {e}")
            raise

        finally:
            self.trainer.end_session()
            for callback in self.callbacks:
                callback.on_train_end(logs=self.training_history, model=self.model)

        logger.info("Training completed")
        errors = self.training_history['reconstruction_error']
        return errors[-1] if errors else float('nan')

    def get_training_history(self) -> Dict[str, List[float]]:
        """Get training history."""
        return {key: list(values) for key, values in self.training_history.items()}

    def reset_training_state(self) -> None:
        """Reset training state for fresh training."""
        self.current_epoch = 0
        self.global_step = 0
        self.training_history = {
            'reconstruction_error': [],
            'epoch_time': []
        }
