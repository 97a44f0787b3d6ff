"""
rbmkit Test Suite

Test Structure:
- test_units.py: Tests for unit activation laws and sampling noise
- test_transforms.py: Tests for dense and convolutional transforms
- test_models.py: Tests for RBM and CRBM energies, sampling and input handling
- test_training.py: Tests for the update rule, CD-k trainer and training loop
- test_config.py: Tests for RBMConfig and the configuration file manager

Usage:
    # Run all tests
    python tests/run_tests.py

    # Run specific test module
    python tests/run_tests.py --test test_models

    # Stop on first failure
    python tests/run_tests.py --failfast
"""

import sys
import warnings
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Suppress warnings during testing
warnings.filterwarnings('ignore', category=UserWarning)
warnings.filterwarnings('ignore', category=FutureWarning)
