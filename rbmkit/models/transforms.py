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
Affine and convolutional transforms between the visible and hidden layers.

A transform computes pre-activations from the current parameters and the
sufficient statistics the trainer needs for the gradients. Transforms are
stateless: the parameters are passed to every call and nothing is written
apart from the returned tensors.

- DenseTransform: standard RBM, pre_h = v W + b, pre_v = h W^T + c
- ConvTransform: CRBM, pre_h = valid cross-correlation of v with the kernels
  (i.e. convolution with flipped kernels), pre_v = full convolution of h with
  the same kernels, biases replicated over each feature map
"""

from abc import ABC, abstractmethod
from typing import Optional, Tuple
import torch
import torch.nn.functional as F

from ..exceptions import ConfigurationError


def per_sample_sum(t: torch.Tensor) -> torch.Tensor:
    """Sum every dimension but the batch one."""
    return t.reshape(t.shape[0], -1).sum(dim=1)


class Transform(ABC):
    """Interface between a Boltzmann machine and its weight structure."""

    @property
    @abstractmethod
    def visible_shape(self) -> Tuple[int, ...]:
        """Shape of one visible sample."""

    @property
    @abstractmethod
    def hidden_shape(self) -> Tuple[int, ...]:
        """Shape of one hidden sample."""

    @property
    @abstractmethod
    def weight_shape(self) -> Tuple[int, ...]:
        """Shape of the weight tensor."""

    @property
    @abstractmethod
    def n_hidden_units(self) -> int:
        """Length of the hidden bias vector."""

    @property
    @abstractmethod
    def n_visible_units(self) -> int:
        """Length of the visible bias vector."""

    @abstractmethod
    def forward(self, v: torch.Tensor, W: torch.Tensor, b: Optional[torch.Tensor] = None) -> torch.Tensor:
        """Hidden pre-activation of a visible batch."""

    @abstractmethod
    def backward(self, h: torch.Tensor, W: torch.Tensor, c: Optional[torch.Tensor] = None) -> torch.Tensor:
        """Visible pre-activation of a hidden batch."""

    @abstractmethod
    def weight_statistic(self, v: torch.Tensor, h: torch.Tensor) -> torch.Tensor:
        """Visible/hidden correlation summed over the batch, shaped like W."""

    @abstractmethod
    def hidden_statistic(self, h: torch.Tensor) -> torch.Tensor:
        """Per hidden bias statistic summed over the batch."""

    @abstractmethod
    def visible_statistic(self, v: torch.Tensor) -> torch.Tensor:
        """Per visible bias statistic summed over the batch."""

    @abstractmethod
    def expand_hidden_bias(self, b: torch.Tensor) -> torch.Tensor:
        """Hidden bias broadcastable against a hidden batch."""

    @abstractmethod
    def expand_visible_bias(self, c: torch.Tensor) -> torch.Tensor:
        """Visible bias broadcastable against a visible batch."""

    def hidden_bias_term(self, h: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
        """Per-sample b . h."""
        return per_sample_sum(h * self.expand_hidden_bias(b))

    def visible_bias_term(self, v: torch.Tensor, c: torch.Tensor) -> torch.Tensor:
        """Per-sample c . v."""
        return per_sample_sum(v * self.expand_visible_bias(c))

    def interaction(self, h: torch.Tensor, pre: torch.Tensor) -> torch.Tensor:
        """Per-sample h . (W * v), given pre = W * v without bias."""
        return per_sample_sum(h * pre)

    def hidden_mean(self, h: torch.Tensor) -> torch.Tensor:
        """Mean activation of each hidden bias unit over a batch."""
        return self.hidden_statistic(h) / h.shape[0]


class DenseTransform(Transform):
    """Dense weight matrix of shape (n_visible, n_hidden)."""

    def __init__(self, n_visible: int, n_hidden: int):
        if n_visible <= 0 or n_hidden <= 0:
            raise ConfigurationError("Number of units must be positive")
        self.n_visible = n_visible
        self.n_hidden = n_hidden

    @property
    def visible_shape(self) -> Tuple[int, ...]:
        return (self.n_visible,)

    @property
    def hidden_shape(self) -> Tuple[int, ...]:
        return (self.n_hidden,)

    @property
    def weight_shape(self) -> Tuple[int, ...]:
        return (self.n_visible, self.n_hidden)

    @property
    def n_hidden_units(self) -> int:
        return self.n_hidden

    @property
    def n_visible_units(self) -> int:
        return self.n_visible

    def forward(self, v, W, b=None):
        pre = torch.matmul(v, W)
        if b is not None:
            pre = pre + b
        return pre

    def backward(self, h, W, c=None):
        pre = torch.matmul(h, W.t())
        if c is not None:
            pre = pre + c
        return pre

    def weight_statistic(self, v, h):
        return torch.matmul(v.t(), h)

    def hidden_statistic(self, h):
        return h.sum(dim=0)

    def visible_statistic(self, v):
        return v.sum(dim=0)

    def expand_hidden_bias(self, b):
        return b

    def expand_visible_bias(self, c):
        return c

    def __repr__(self) -> str:
        return f"DenseTransform(n_visible={self.n_visible}, n_hidden={self.n_hidden})"


class ConvTransform(Transform):
    """
    Shared convolutional kernels.

    Visible batches are (N, C, NV1, NV2), kernels (K, C, NW1, NW2) and hidden
    batches (N, K, NV1 - NW1 + 1, NV2 - NW2 + 1).
    """

    def __init__(
        self,
        n_channels: int,
        visible_size: Tuple[int, int],
        n_kernels: int,
        kernel_size: Tuple[int, int],
    ):
        nv1, nv2 = visible_size
        nw1, nw2 = kernel_size
        if min(n_channels, n_kernels, nv1, nv2, nw1, nw2) <= 0:
            raise ConfigurationError("Convolutional dimensions must be positive")
        if nw1 > nv1 or nw2 > nv2:
            raise ConfigurationError(
                f"Kernel {kernel_size} does not fit in visible map {visible_size}"
            )
        self.n_channels = n_channels
        self.visible_size = (nv1, nv2)
        self.n_kernels = n_kernels
        self.kernel_size = (nw1, nw2)
        self.hidden_size = (nv1 - nw1 + 1, nv2 - nw2 + 1)

    @property
    def visible_shape(self) -> Tuple[int, ...]:
        return (self.n_channels,) + self.visible_size

    @property
    def hidden_shape(self) -> Tuple[int, ...]:
        return (self.n_kernels,) + self.hidden_size

    @property
    def weight_shape(self) -> Tuple[int, ...]:
        return (self.n_kernels, self.n_channels) + self.kernel_size

    @property
    def n_hidden_units(self) -> int:
        return self.n_kernels

    @property
    def n_visible_units(self) -> int:
        return self.n_channels

    @property
    def n_hidden_positions(self) -> int:
        return self.hidden_size[0] * self.hidden_size[1]

    def forward(self, v, W, b=None):
        # conv2d is a cross-correlation, i.e. a convolution with flipped kernels
        return F.conv2d(v, W, bias=b)

    def backward(self, h, W, c=None):
        # Transposed valid correlation == full convolution with the same kernels
        return F.conv_transpose2d(h, W, bias=c)

    def weight_statistic(self, v, h):
        # Batch becomes the channel axis so conv2d sums over samples:
        # (C, N, NV) x (K, N, NH) -> (C, K, NW)
        corr = F.conv2d(v.transpose(0, 1), h.transpose(0, 1))
        return corr.transpose(0, 1) / self.n_hidden_positions

    def hidden_statistic(self, h):
        return h.mean(dim=(2, 3)).sum(dim=0)

    def visible_statistic(self, v):
        return v.mean(dim=(2, 3)).sum(dim=0)

    def expand_hidden_bias(self, b):
        return b.view(1, -1, 1, 1)

    def expand_visible_bias(self, c):
        return c.view(1, -1, 1, 1)

    def __repr__(self) -> str:
        return (
            f"ConvTransform(n_channels={self.n_channels}, "
            f"visible_size={self.visible_size}, "
            f"n_kernels={self.n_kernels}, "
            f"kernel_size={self.kernel_size})"
        )
