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
Models module for rbmkit.

This module provides the Boltzmann machine architectures:
- RestrictedBoltzmannMachine: RBM with a pluggable weight structure
- ConvolutionalRBM: CRBM with shared convolutional kernels
- Transforms: dense and convolutional visible/hidden mappings
- Unit activation laws and sampling helpers
"""

from .rbm import RestrictedBoltzmannMachine, ParameterSnapshot
from .crbm import ConvolutionalRBM
from .transforms import Transform, DenseTransform, ConvTransform
from .units import activate, activation_probabilities, sample_units
from .utils import (
    sample_bernoulli,
    sample_gaussian,
    logistic_noise,
    ranged_noise,
    check_finite,
    clip_gradients
)

__version__ = "0.1.0"
__all__ = [
    # Core models
    "RestrictedBoltzmannMachine",
    "ConvolutionalRBM",
    "ParameterSnapshot",

    # Transforms
    "Transform",
    "DenseTransform",
    "ConvTransform",

    # Units
    "activate",
    "activation_probabilities",
    "sample_units",

    # Utility functions
    "sample_bernoulli",
    "sample_gaussian",
    "logistic_noise",
    "ranged_noise",
    "check_finite",
    "clip_gradients"
]
