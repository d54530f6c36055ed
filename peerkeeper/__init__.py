"""
peerkeeper: npm dependency conflict resolution for feature templates.

peerkeeper merges the npm package declarations of several feature
templates into one dependency set before they are installed together.

Features include:
    • Version conflict resolution with selectable strategies
    • Peer dependency discovery against the npm registry
    • Missing-peer detection with confidence and severity labels
    • Known incompatibility checks (React, Next.js, type packages)
    • In-memory and on-disk registry metadata caching
    • Offline mode and graceful fallbacks for unreachable packages
"""

from __future__ import annotations

from peerkeeper.__version__ import __version__

# ---------------------------------------------------------------------------
# Package Metadata
# ---------------------------------------------------------------------------

__author__ = "peerkeeper Contributors"
__license__ = "Apache-2.0"
__description__ = "Peer dependency analysis and dependency merging for npm templates."

__all__ = [
    "__version__",
]
