#!/usr/bin/env python3
"""
Unit tests for rbmkit models.

Covers the dense RBM and the convolutional RBM: initialization, layer
activation, energies, input handling and parameter snapshots.
"""

import itertools
import unittest
import torch
import numpy as np
from pathlib import Path
import sys

# Add project root to path
sys.path.append(str(Path(__file__).parent.parent))

from rbmkit.config import UnitType
from rbmkit.exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    NumericDivergenceError,
    UnsupportedOperationError
)
from rbmkit.models.crbm import ConvolutionalRBM
from rbmkit.models.rbm import RestrictedBoltzmannMachine


def all_binary_states(shape):
    """Every binary configuration of a layer, stacked on a batch axis."""
    n = int(np.prod(shape))
    states = torch.tensor(list(itertools.product([0.0, 1.0], repeat=n)), dtype=torch.float64)
    return states.reshape((2 ** n,) + tuple(shape))


def brute_force_free_energy(model, v):
    """-log sum_h exp(-E(v, h)) by enumeration of the hidden layer."""
    states = all_binary_states(model.hidden_shape)
    energies = torch.stack([model.energy(v, h.unsqueeze(0))[0] for h in states])
    return -torch.logsumexp(-energies, dim=0)


class TestRestrictedBoltzmannMachine(unittest.TestCase):
    """Test cases for RestrictedBoltzmannMachine."""

    def setUp(self):
        """Set up test fixtures."""
        self.n_visible = 5
        self.n_hidden = 8
        self.rbm = RestrictedBoltzmannMachine(
            n_visible=self.n_visible,
            n_hidden=self.n_hidden,
            config={'seed': 42}
        )

        torch.manual_seed(42)
        self.test_data = torch.bernoulli(torch.full((32, self.n_visible), 0.5))

    def test_initialization(self):
        """Test RBM initialization."""
        self.assertEqual(self.rbm.n_visible, self.n_visible)
        self.assertEqual(self.rbm.n_hidden, self.n_hidden)
        self.assertEqual(self.rbm.W.shape, (self.n_visible, self.n_hidden))
        self.assertEqual(self.rbm.v_bias.shape, (self.n_visible,))
        self.assertEqual(self.rbm.h_bias.shape, (self.n_hidden,))
        self.assertTrue(torch.all(self.rbm.h_bias == 0))
        self.assertTrue(torch.all(self.rbm.v_bias == 0))

    def test_weight_initialization_scale(self):
        """Dense weights are drawn from N(0, 0.1)."""
        rbm = RestrictedBoltzmannMachine(200, 100, config={'seed': 0})
        self.assertAlmostEqual(rbm.W.std().item(), 0.1, delta=0.01)
        self.assertAlmostEqual(rbm.W.mean().item(), 0.0, delta=0.01)

    def test_seed_reproducibility(self):
        """Models built with the same seed are identical."""
        other = RestrictedBoltzmannMachine(self.n_visible, self.n_hidden, config={'seed': 42})
        self.assertTrue(torch.equal(self.rbm.W, other.W))

    def test_missing_sizes(self):
        """Dense form needs both layer sizes."""
        with self.assertRaises(ConfigurationError):
            RestrictedBoltzmannMachine(n_visible=4)

    def test_visible_to_hidden(self):
        """Test visible to hidden transformation."""
        h_prob, h_sample = self.rbm.visible_to_hidden(self.test_data)

        self.assertEqual(h_prob.shape, (32, self.n_hidden))
        self.assertEqual(h_sample.shape, (32, self.n_hidden))
        self.assertTrue(torch.all((h_prob >= 0) & (h_prob <= 1)))
        self.assertTrue(torch.all((h_sample == 0) | (h_sample == 1)))

    def test_hidden_to_visible(self):
        """Test hidden to visible transformation."""
        h_sample = torch.randint(0, 2, (32, self.n_hidden), dtype=torch.float32)
        v_prob, v_sample = self.rbm.hidden_to_visible(h_sample)

        self.assertEqual(v_prob.shape, (32, self.n_visible))
        self.assertEqual(v_sample.shape, (32, self.n_visible))
        self.assertTrue(torch.all((v_prob >= 0) & (v_prob <= 1)))

    def test_gibbs_step(self):
        """Test Gibbs sampling step."""
        v_new, h_prob, h_sample, v_prob = self.rbm.gibbs_step(self.test_data)

        self.assertEqual(v_new.shape, self.test_data.shape)
        self.assertEqual(v_prob.shape, self.test_data.shape)
        self.assertEqual(h_sample.shape, (32, self.n_hidden))
        self.assertEqual(h_prob.shape, (32, self.n_hidden))

    def test_binary_energy(self):
        """E(v, h) = -c.v - b.h - v W h."""
        rbm = RestrictedBoltzmannMachine(3, 2, dtype=torch.float64)
        rbm.W.data.copy_(torch.tensor([[1.0, -1.0], [0.5, 2.0], [0.0, 1.0]], dtype=torch.float64))
        rbm.h_bias.data.copy_(torch.tensor([0.5, -0.5], dtype=torch.float64))
        rbm.v_bias.data.copy_(torch.tensor([1.0, 0.0, -1.0], dtype=torch.float64))

        v = torch.tensor([1.0, 1.0, 0.0])
        h = torch.tensor([[1.0, 1.0]])
        # -c.v = -1, -b.h = 0, -vWh = -(1.5 + 1.0) = -2.5
        self.assertAlmostEqual(rbm.energy(v, h).item(), -3.5, places=10)

    def test_free_energy_matches_enumeration(self):
        """Free energy equals -log sum_h exp(-E(v, h)) for binary visible units."""
        rbm = RestrictedBoltzmannMachine(4, 3, config={'seed': 1}, dtype=torch.float64)
        rbm.h_bias.data.copy_(torch.tensor([0.3, -0.7, 1.1], dtype=torch.float64))
        rbm.v_bias.data.copy_(torch.tensor([0.2, 0.0, -0.4, 0.9], dtype=torch.float64))
        v = torch.tensor([1.0, 0.0, 1.0, 1.0])

        self.assertAlmostEqual(
            rbm.free_energy(v).item(), brute_force_free_energy(rbm, v).item(), places=8
        )

    def test_gaussian_free_energy_matches_enumeration(self):
        """Free energy is consistent with the Gaussian visible energy."""
        rbm = RestrictedBoltzmannMachine(
            4, 3, config={'visible_unit': 'gaussian', 'seed': 2}, dtype=torch.float64
        )
        rbm.v_bias.data.copy_(torch.tensor([0.5, -0.5, 0.0, 1.0], dtype=torch.float64))
        v = torch.tensor([0.3, -1.2, 0.8, 2.0])

        self.assertAlmostEqual(
            rbm.free_energy(v).item(), brute_force_free_energy(rbm, v).item(), places=8
        )

    def test_gaussian_visible_energy(self):
        """E(v, h) = sum((v - c)^2)/2 - b.h - v W h."""
        rbm = RestrictedBoltzmannMachine(2, 1, config={'visible_unit': 'gaussian'}, dtype=torch.float64)
        rbm.W.data.copy_(torch.tensor([[1.0], [2.0]], dtype=torch.float64))
        rbm.h_bias.data.fill_(0.5)
        rbm.v_bias.data.copy_(torch.tensor([1.0, -1.0], dtype=torch.float64))

        v = torch.tensor([2.0, 1.0])
        h = torch.tensor([[1.0]])
        # 0.5 * (1 + 4) - 0.5 - (2 + 2) = -2.0
        self.assertAlmostEqual(rbm.energy(v, h).item(), -2.0, places=10)

    def test_free_energy_batch(self):
        """Free energy is one finite value per sample."""
        free_energy = self.rbm.free_energy(self.test_data)

        self.assertEqual(free_energy.shape, (32,))
        self.assertTrue(torch.all(torch.isfinite(free_energy)))

    def test_energy_unsupported_for_rectified_hidden(self):
        """Energies have no closed form with rectified hidden units."""
        rbm = RestrictedBoltzmannMachine(5, 4, config={'hidden_unit': 'relu'})
        with self.assertRaises(UnsupportedOperationError):
            rbm.free_energy(self.test_data)
        with self.assertRaises(UnsupportedOperationError):
            rbm.energy(self.test_data, torch.zeros(32, 4))

    def test_non_finite_energy(self):
        """NaN parameters surface as NumericDivergenceError."""
        self.rbm.W.data[0, 0] = float('nan')
        with self.assertRaises(NumericDivergenceError):
            self.rbm.free_energy(self.test_data)

    def test_prepare_input(self):
        """Single samples gain a batch axis, wrong sizes are rejected."""
        self.assertEqual(self.rbm.prepare_input(torch.zeros(5)).shape, (1, 5))
        self.assertEqual(self.rbm.prepare_input(np.zeros((3, 5))).shape, (3, 5))
        self.assertEqual(self.rbm.prepare_input([torch.zeros(5), torch.ones(5)]).shape, (2, 5))

        with self.assertRaises(DimensionMismatchError) as ctx:
            self.rbm.prepare_input(torch.zeros(3, 6))
        self.assertEqual(ctx.exception.expected, (5,))

    def test_reconstruct(self):
        """Test data reconstruction."""
        reconstructed = self.rbm.reconstruct(self.test_data, n_gibbs=1)

        self.assertEqual(reconstructed.shape, self.test_data.shape)
        self.assertTrue(torch.all((reconstructed >= 0) & (reconstructed <= 1)))
        self.assertGreaterEqual(self.rbm.reconstruction_error(self.test_data), 0.0)

    def test_sample(self):
        """Gibbs sampling from random initialization."""
        samples = self.rbm.sample(n_samples=7, n_gibbs=5)
        self.assertEqual(samples.shape, (7, self.n_visible))
        self.assertTrue(torch.all((samples == 0) | (samples == 1)))

    def test_hidden_representation(self):
        """A single sample gives a single hidden vector."""
        self.assertEqual(self.rbm.get_hidden_representation(self.test_data[0]).shape, (self.n_hidden,))
        self.assertEqual(self.rbm.get_hidden_representation(self.test_data).shape, (32, self.n_hidden))

    def test_backup_and_restore(self):
        """Snapshots roll the parameters back."""
        self.assertFalse(self.rbm.restore_backup())

        original = self.rbm.W.clone()
        self.rbm.backup_parameters()
        self.rbm.W.data.add_(1.0)
        self.rbm.corrupted = True

        self.assertTrue(self.rbm.restore_backup())
        self.assertTrue(torch.equal(self.rbm.W, original))
        self.assertFalse(self.rbm.corrupted)

    def test_reset_training_state(self):
        """Momentum, sparsity and backup state are cleared."""
        self.rbm.momentum_buffers['W'] = torch.ones(1)
        self.rbm.sparsity_q = torch.tensor(0.5)
        self.rbm.backup_parameters()

        self.rbm.reset_training_state()

        self.assertEqual(self.rbm.momentum_buffers, {})
        self.assertIsNone(self.rbm.sparsity_q)
        self.assertIsNone(self.rbm.backup)

    def test_repr(self):
        """String representation names the transform and the units."""
        text = repr(self.rbm)
        self.assertIn("DenseTransform", text)
        self.assertIn("binary", text)


class TestConvolutionalRBM(unittest.TestCase):
    """Test cases for ConvolutionalRBM."""

    def setUp(self):
        """Set up test fixtures."""
        self.crbm = ConvolutionalRBM(
            n_channels=1,
            visible_size=10,
            n_kernels=4,
            kernel_size=3,
            config={'seed': 42}
        )

        torch.manual_seed(42)
        self.test_data = torch.bernoulli(torch.full((6, 1, 10, 10), 0.3))

    def test_initialization(self):
        """Test CRBM initialization."""
        self.assertEqual(self.crbm.hidden_size, (8, 8))
        self.assertEqual(self.crbm.W.shape, (4, 1, 3, 3))
        self.assertEqual(self.crbm.h_bias.shape, (4,))
        self.assertEqual(self.crbm.v_bias.shape, (1,))
        self.assertEqual(self.crbm.n_visible, 100)
        self.assertEqual(self.crbm.n_hidden, 4 * 64)

    def test_weight_initialization_scale(self):
        """Convolutional weights are drawn from N(0, 0.01)."""
        crbm = ConvolutionalRBM(1, 28, 20, 12, config={'seed': 0})
        self.assertAlmostEqual(crbm.W.std().item(), 0.01, delta=0.001)

    def test_kernel_too_large(self):
        """Kernels larger than the visible map are rejected."""
        with self.assertRaises(ConfigurationError):
            ConvolutionalRBM(n_channels=1, visible_size=4, n_kernels=2, kernel_size=5)

    def test_layer_activation_shapes(self):
        """Hidden maps and reconstructions have the expected shapes."""
        h_prob, h_sample = self.crbm.visible_to_hidden(self.test_data)
        self.assertEqual(h_prob.shape, (6, 4, 8, 8))
        self.assertTrue(torch.all((h_sample == 0) | (h_sample == 1)))

        v_prob, _ = self.crbm.hidden_to_visible(h_sample)
        self.assertEqual(v_prob.shape, (6, 1, 10, 10))

    def test_flat_input(self):
        """Flat vectors are reshaped to maps."""
        flat = self.test_data.reshape(6, 100)
        self.assertEqual(self.crbm.prepare_input(flat).shape, (6, 1, 10, 10))
        self.assertEqual(self.crbm.prepare_input(flat[0]).shape, (1, 1, 10, 10))

        with self.assertRaises(DimensionMismatchError):
            self.crbm.prepare_input(torch.zeros(2, 1, 9, 9))

    def test_free_energy_matches_enumeration(self):
        """Free energy equals the enumerated value on a tiny CRBM."""
        crbm = ConvolutionalRBM(1, 3, 1, 2, config={'seed': 3}, dtype=torch.float64)
        crbm.W.data.mul_(50.0)
        crbm.h_bias.data.fill_(-0.3)
        crbm.v_bias.data.fill_(0.4)
        v = torch.tensor([[1.0, 0.0, 1.0], [0.0, 1.0, 1.0], [1.0, 1.0, 0.0]]).reshape(1, 3, 3)

        self.assertAlmostEqual(
            crbm.free_energy(v).item(), brute_force_free_energy(crbm, v).item(), places=8
        )

    def test_hidden_representation(self):
        """A single sample gives one set of hidden maps."""
        rep = self.crbm.get_hidden_representation(self.test_data[0])
        self.assertEqual(rep.shape, (4, 8, 8))

    def test_rectified_hidden_units(self):
        """CRBMs accept rectified hidden units."""
        crbm = ConvolutionalRBM(1, 10, 2, 3, config={'hidden_unit': UnitType.RELU6})
        _, h_sample = crbm.visible_to_hidden(self.test_data)
        self.assertTrue(torch.all((h_sample >= 0) & (h_sample <= 6)))


if __name__ == '__main__':
    unittest.main()
