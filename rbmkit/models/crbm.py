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
Convolutional RBM.

The CRBM shares a bank of kernels across the visible map instead of using a
dense weight matrix. Hidden pre-activations are valid cross-correlations of
every visible channel with every kernel; visible pre-activations are full
convolutions of the hidden maps with the same kernels. Each kernel has one
hidden bias replicated over its whole map and each channel one visible bias.

Training, energies and unit laws are shared with RestrictedBoltzmannMachine;
only the transform and the weight initialization differ.
"""

from typing import Any, Dict, Optional, Tuple, Union
import torch
import logging

from ..config import RBMConfig
from .rbm import RestrictedBoltzmannMachine
from .transforms import ConvTransform

logger = logging.getLogger(__name__)


def _pair(value: Union[int, Tuple[int, int]]) -> Tuple[int, int]:
    if isinstance(value, int):
        return (value, value)
    return tuple(value)


class ConvolutionalRBM(RestrictedBoltzmannMachine):
    """
    Convolutional Restricted Boltzmann Machine (Honglak Lee formulation).

    Inputs are (batch, channels, height, width) tensors; flat vectors of
    channels * height * width values are reshaped automatically.
    """

    weight_init_std = 0.01

    def __init__(
        self,
        n_channels: int,
        visible_size: Union[int, Tuple[int, int]],
        n_kernels: int,
        kernel_size: Union[int, Tuple[int, int]],
        config: Union[RBMConfig, Dict[str, Any], None] = None,
        device: Optional[torch.device] = None,
        dtype: torch.dtype = torch.float32,
    ):
        """
        Initialize Convolutional RBM.

        Args:
            n_channels: Number of visible channels
            visible_size: Height and width of the visible maps (int for square)
            n_kernels: Number of kernels, i.e. hidden feature maps
            kernel_size: Height and width of the kernels (int for square)
            config: Training configuration
            device: Device to place tensors on
            dtype: Data type for tensors
        """
        transform = ConvTransform(
            n_channels=n_channels,
            visible_size=_pair(visible_size),
            n_kernels=n_kernels,
            kernel_size=_pair(kernel_size),
        )
        super().__init__(config=config, transform=transform, device=device, dtype=dtype)

        logger.debug(
            f"CRBM with {n_kernels} kernels of {transform.kernel_size}, "
            f"hidden maps of {transform.hidden_size}"
        )

    @property
    def n_channels(self) -> int:
        return self.transform.n_channels

    @property
    def n_kernels(self) -> int:
        return self.transform.n_kernels

    @property
    def kernel_size(self) -> Tuple[int, int]:
        return self.transform.kernel_size

    @property
    def hidden_size(self) -> Tuple[int, int]:
        return self.transform.hidden_size
