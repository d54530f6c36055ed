"""
peerkeeper version information.

This module provides a single source of truth for the package version.
It follows Semantic Versioning: https://semver.org/
"""

from __future__ import annotations

__version__ = "0.1.0"

VERSION_STRING = f"peerkeeper {__version__}"
