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
Training callbacks

Hooks the training loop calls around epochs and batches:
- Callback: base class, also usable as a stop condition via should_stop()
- EarlyStopping: stops when the reconstruction error stops improving and
  rolls W/b/c back to the best epoch
- MetricSink: forwards epoch metrics to a caller-supplied sink(name, value, step)
- ProgressLogger: logs reconstruction error, hidden activation and weight norm
"""

from typing import Any, Callable, Dict, Optional
import logging
import math
import time

from ..models.rbm import ParameterSnapshot, RestrictedBoltzmannMachine

logger = logging.getLogger(__name__)


class Callback:
    """Base class for training callbacks; every hook is a no-op."""

    def on_train_begin(self, logs: Dict[str, Any], model: RestrictedBoltzmannMachine) -> None:
        pass

    def on_train_end(self, logs: Dict[str, Any], model: RestrictedBoltzmannMachine) -> None:
        pass

    def on_epoch_begin(self, epoch: int, logs: Dict[str, Any], model: RestrictedBoltzmannMachine) -> None:
        pass

    def on_epoch_end(self, epoch: int, logs: Dict[str, Any], model: RestrictedBoltzmannMachine) -> None:
        pass

    def on_batch_begin(self, batch: int, logs: Dict[str, Any], model: RestrictedBoltzmannMachine) -> None:
        pass

    def on_batch_end(self, batch: int, logs: Dict[str, Any], model: RestrictedBoltzmannMachine) -> None:
        pass

    def should_stop(self) -> bool:
        """Whether training should stop after the current epoch."""
        return False


class EarlyStopping(Callback):
    """
    Stop training when an epoch metric stops improving.

    The best parameters are kept as a ParameterSnapshot and written back
    into the model when training stops early.
    """

    def __init__(
        self,
        monitor: str = 'reconstruction_error',
        patience: int = 10,
        min_delta: float = 0.0,
        mode: str = 'min',
        restore_best: bool = True
    ):
        """
        Args:
            monitor: Epoch metric to watch
            patience: Epochs without improvement before stopping
            min_delta: Smallest change counted as an improvement
            mode: 'min' for errors, 'max' for scores
            restore_best: Whether W/b/c are rolled back to the best epoch
        """
        if mode not in ('min', 'max'):
            raise ValueError(f"Mode {mode} not supported")
        self.monitor = monitor
        self.patience = patience
        self.min_delta = min_delta
        self.mode = mode
        self.restore_best = restore_best
        self._reset()

    def _reset(self) -> None:
        self.wait = 0
        self.best_epoch: Optional[int] = None
        self.best = math.inf if self.mode == 'min' else -math.inf
        self.best_parameters: Optional[ParameterSnapshot] = None

    def _improved(self, value: float) -> bool:
        if self.mode == 'min':
            return value < self.best - self.min_delta
        return value > self.best + self.min_delta

    def on_train_begin(self, logs, model):
        self._reset()

    def on_epoch_end(self, epoch, logs, model):
        value = logs.get(self.monitor)
        if value is None:
            logger.warning(f"Early stopping metric '{self.monitor}' not found in epoch logs")
            return

        if self._improved(value):
            self.best = value
            self.best_epoch = epoch
            self.wait = 0
            if self.restore_best:
                self.best_parameters = ParameterSnapshot.capture(model)
            return

        self.wait += 1
        if self.should_stop():
            logger.info(
                f"Early stopping at epoch {epoch + 1}: best {self.monitor}="
                f"{self.best:.5f} at epoch {self.best_epoch + 1}"
            )
            if self.best_parameters is not None:
                self.best_parameters.restore(model)

    def should_stop(self) -> bool:
        return self.wait >= self.patience


class MetricSink(Callback):
    """Forward every numeric epoch metric to sink(name, value, step)."""

    def __init__(
        self,
        sink: Callable[[str, float, int], None],
        include_batches: bool = False
    ):
        """
        Args:
            sink: Called as sink(name, value, step)
            include_batches: Whether batch metrics are forwarded too, prefixed
                'batch_' and stepped by a running batch counter
        """
        self.sink = sink
        self.include_batches = include_batches
        self.batch_step = 0

    def on_train_begin(self, logs, model):
        self.batch_step = 0

    def on_batch_end(self, batch, logs, model):
        if not self.include_batches:
            return
        for key, value in logs.items():
            if isinstance(value, (int, float)):
                self.sink(f'batch_{key}', float(value), self.batch_step)
        self.batch_step += 1

    def on_epoch_end(self, epoch, logs, model):
        for key, value in logs.items():
            if isinstance(value, (int, float)):
                self.sink(key, float(value), epoch)


class ProgressLogger(Callback):
    """Log the CD training metrics every log_freq epochs."""

    def __init__(self, log_freq: int = 1):
        self.log_freq = max(1, log_freq)
        self.start_time: Optional[float] = None
        self.last_error = math.nan

    def on_train_begin(self, logs, model):
        self.start_time = time.time()
        self.last_error = math.nan
        logger.info(f"Training {model!r}")

    def on_epoch_end(self, epoch, logs, model):
        self.last_error = logs.get('reconstruction_error', math.nan)
        if (epoch + 1) % self.log_freq:
            return
        logger.info(
            f"Epoch {epoch + 1}: reconstruction_error={self.last_error:.5f}"
            f" hidden_activation={logs.get('hidden_activation', math.nan):.4f}"
            f" weight_norm={logs.get('weight_norm', math.nan):.4f}"
        )

    def on_train_end(self, logs, model):
        if self.start_time is not None:
            logger.info(
                f"Training finished in {time.time() - self.start_time:.2f}s,"
                f" final reconstruction_error={self.last_error:.5f}"
            )
