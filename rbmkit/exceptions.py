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
Error types raised by rbmkit.

All failures are terminal for the current training invocation; nothing in
the training core retries.
"""

from typing import Optional


class RBMError(Exception):
    """Base class for every error raised by rbmkit."""


class ConfigurationError(RBMError, ValueError):
    """Invalid hyperparameters, unit combination or declared shapes."""


class DimensionMismatchError(ConfigurationError):
    """A sample does not match the configured visible layer."""

    def __init__(self, expected, actual):
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        super().__init__(
            f"Expected visible shape {self.expected}, got {self.actual}"
        )


class NumericDivergenceError(RBMError, ArithmeticError):
    """NaN or Inf found in activations, energies or parameters."""

    def __init__(self, message: str, restored: Optional[bool] = None):
        self.restored = bool(restored)
        if restored is True:
            message += " (parameters restored from backup)"
        elif restored is False:
            message += " (no backup, model state is corrupted)"
        super().__init__(message)


class UnsupportedOperationError(RBMError, NotImplementedError):
    """The operation has no closed form for the configured unit types."""
