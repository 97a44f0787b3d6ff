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
Training module for rbmkit.

This module provides the contrastive divergence training infrastructure:
- TrainingLoop: epoch and minibatch orchestration with callbacks
- ContrastiveDivergenceTrainer: CD-k statistics, sequential or parallel
- WeightUpdateRule: decay, momentum, clipping and sparsity
- Callbacks: early stopping, progress logging and metric sinks
"""

from .loop import TrainingLoop
from .trainer import (
    CDPhase,
    TrainingContext,
    GradientAccumulator,
    BatchResult,
    ContrastiveDivergenceTrainer
)
from .update import (
    Gradients,
    WeightUpdateRule,
    apply_weight_decay,
    momentum_coefficient
)
from .callbacks import (
    Callback,
    EarlyStopping,
    MetricSink,
    ProgressLogger
)

__version__ = "0.1.0"
__all__ = [
    # Core training
    "TrainingLoop",
    "ContrastiveDivergenceTrainer",
    "CDPhase",
    "TrainingContext",
    "GradientAccumulator",
    "BatchResult",

    # Update rule
    "Gradients",
    "WeightUpdateRule",
    "apply_weight_decay",
    "momentum_coefficient",

    # Callbacks
    "Callback",
    "EarlyStopping",
    "MetricSink",
    "ProgressLogger"
]
