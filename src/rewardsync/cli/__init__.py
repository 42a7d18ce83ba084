# Copyright (c) RewardSync Contributors. All rights reserved.
# Licensed under the MIT License.
"""Command-line interface for RewardSync."""
