#!/usr/bin/env python3
"""
Unit tests for dense and convolutional transforms.
"""

import unittest
import torch
import torch.nn.functional as F
from pathlib import Path
import sys

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from rbmkit.exceptions import ConfigurationError
from rbmkit.models.transforms import ConvTransform, DenseTransform


class TestDenseTransform(unittest.TestCase):
    """Test cases for DenseTransform."""

    def setUp(self):
        """Set up test fixtures."""
        torch.manual_seed(42)
        self.transform = DenseTransform(6, 4)
        self.W = torch.randn(6, 4)
        self.b = torch.randn(4)
        self.c = torch.randn(6)

    def test_shapes(self):
        """Layer and weight shapes."""
        self.assertEqual(self.transform.visible_shape, (6,))
        self.assertEqual(self.transform.hidden_shape, (4,))
        self.assertEqual(self.transform.weight_shape, (6, 4))

    def test_forward_backward(self):
        """Pre-activations are v W + b and h W^T + c."""
        v = torch.rand(3, 6)
        h = torch.rand(3, 4)

        self.assertTrue(torch.allclose(self.transform.forward(v, self.W, self.b), v @ self.W + self.b))
        self.assertTrue(torch.allclose(self.transform.backward(h, self.W, self.c), h @ self.W.t() + self.c))

    def test_statistics(self):
        """Statistics are sums over the batch."""
        v = torch.rand(5, 6)
        h = torch.rand(5, 4)

        expected = sum(torch.outer(v[i], h[i]) for i in range(5))
        self.assertTrue(torch.allclose(self.transform.weight_statistic(v, h), expected, atol=1e-5))
        self.assertTrue(torch.allclose(self.transform.hidden_statistic(h), h.sum(dim=0)))
        self.assertTrue(torch.allclose(self.transform.hidden_mean(h), h.mean(dim=0)))

    def test_invalid_sizes(self):
        """Non-positive sizes are rejected."""
        with self.assertRaises(ConfigurationError):
            DenseTransform(0, 4)


class TestConvTransform(unittest.TestCase):
    """Test cases for ConvTransform."""

    def setUp(self):
        """Set up test fixtures."""
        torch.manual_seed(42)
        self.transform = ConvTransform(n_channels=2, visible_size=(6, 5), n_kernels=3, kernel_size=(3, 2))
        self.W = torch.randn(self.transform.weight_shape, dtype=torch.float64)
        self.v = torch.rand((4,) + self.transform.visible_shape, dtype=torch.float64)
        self.h = torch.rand((4,) + self.transform.hidden_shape, dtype=torch.float64)

    def test_shapes(self):
        """Hidden maps are NV - NW + 1 per axis."""
        self.assertEqual(self.transform.hidden_size, (4, 4))
        self.assertEqual(self.transform.visible_shape, (2, 6, 5))
        self.assertEqual(self.transform.hidden_shape, (3, 4, 4))
        self.assertEqual(self.transform.weight_shape, (3, 2, 3, 2))
        self.assertEqual(self.transform.n_hidden_units, 3)
        self.assertEqual(self.transform.n_visible_units, 2)

    def test_kernel_larger_than_visible(self):
        """A kernel that does not fit in the visible map is rejected."""
        with self.assertRaises(ConfigurationError):
            ConvTransform(n_channels=1, visible_size=(4, 4), n_kernels=2, kernel_size=(5, 3))

    def test_forward_is_valid_cross_correlation(self):
        """Hidden pre-activation matches an explicit valid correlation."""
        pre = self.transform.forward(self.v, self.W)
        nh1, nh2 = self.transform.hidden_size
        nw1, nw2 = self.transform.kernel_size

        expected = torch.zeros_like(pre)
        for k in range(3):
            for i in range(nh1):
                for j in range(nh2):
                    patch = self.v[:, :, i:i + nw1, j:j + nw2]
                    expected[:, k, i, j] = (patch * self.W[k]).sum(dim=(1, 2, 3))

        self.assertTrue(torch.allclose(pre, expected))

    def test_backward_is_adjoint_of_forward(self):
        """<forward(v), h> == <v, backward(h)>, i.e. backward is the full convolution."""
        lhs = torch.sum(self.transform.forward(self.v, self.W) * self.h)
        rhs = torch.sum(self.v * self.transform.backward(self.h, self.W))

        self.assertAlmostEqual(lhs.item(), rhs.item(), places=8)
        self.assertEqual(self.transform.backward(self.h, self.W).shape, self.v.shape)

    def test_biases_are_replicated(self):
        """Each kernel bias is added over its whole map."""
        b = torch.tensor([1.0, -2.0, 0.5], dtype=torch.float64)
        with_bias = self.transform.forward(self.v, self.W, b)
        without_bias = self.transform.forward(self.v, self.W)

        self.assertTrue(torch.allclose(with_bias - without_bias, b.view(1, 3, 1, 1).expand_as(with_bias)))

    def test_weight_statistic(self):
        """Weight statistic is d/dW sum(h * forward(v, W)) over the number of hidden positions."""
        W = self.W.clone().requires_grad_(True)
        torch.sum(self.h * F.conv2d(self.v, W)).backward()

        stat = self.transform.weight_statistic(self.v, self.h)
        self.assertEqual(stat.shape, self.W.shape)
        self.assertTrue(torch.allclose(stat * self.transform.n_hidden_positions, W.grad))

    def test_bias_statistics_are_spatial_means(self):
        """Bias statistics average each map and sum over the batch."""
        self.assertTrue(torch.allclose(
            self.transform.hidden_statistic(self.h), self.h.mean(dim=(2, 3)).sum(dim=0)
        ))
        self.assertTrue(torch.allclose(
            self.transform.visible_statistic(self.v), self.v.mean(dim=(2, 3)).sum(dim=0)
        ))

    def test_one_by_one_kernel_matches_dense(self):
        """A 1x1 kernel over a 1x1 map is a dense layer."""
        conv = ConvTransform(n_channels=5, visible_size=(1, 1), n_kernels=3, kernel_size=(1, 1))
        dense = DenseTransform(5, 3)
        W_dense = torch.randn(5, 3, dtype=torch.float64)
        W_conv = W_dense.t().reshape(3, 5, 1, 1)
        v = torch.rand(4, 5, dtype=torch.float64)

        conv_pre = conv.forward(v.reshape(4, 5, 1, 1), W_conv).reshape(4, 3)
        self.assertTrue(torch.allclose(conv_pre, dense.forward(v, W_dense)))


if __name__ == '__main__':
    unittest.main()
