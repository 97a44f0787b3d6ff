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
rbmkit: contrastive divergence training for Restricted Boltzmann Machines.

This package provides:
- RestrictedBoltzmannMachine: dense RBM with binary/Gaussian visible units
  and binary or rectified hidden units
- ConvolutionalRBM: convolutional RBM with shared kernels
- TrainingLoop: CD-k training with momentum, weight decay, sparsity,
  gradient clipping, denoising and parallel batch processing
- RBMConfig: validated training hyperparameters
"""

from .config import RBMConfig, UnitType, DecayType, SparsityMethod
from .exceptions import (
    RBMError,
    ConfigurationError,
    DimensionMismatchError,
    NumericDivergenceError,
    UnsupportedOperationError
)
from .models import RestrictedBoltzmannMachine, ConvolutionalRBM
from .training import TrainingLoop, ContrastiveDivergenceTrainer

__version__ = "0.1.0"
__all__ = [
    # Configuration
    "RBMConfig",
    "UnitType",
    "DecayType",
    "SparsityMethod",

    # Errors
    "RBMError",
    "ConfigurationError",
    "DimensionMismatchError",
    "NumericDivergenceError",
    "UnsupportedOperationError",

    # Models
    "RestrictedBoltzmannMachine",
    "ConvolutionalRBM",

    # Training
    "TrainingLoop",
    "ContrastiveDivergenceTrainer"
]
