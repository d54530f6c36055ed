"""
Core functionality exports for peerkeeper.

This module provides convenient access to the core subsystems of peerkeeper.
Importing from here keeps user-facing imports clean and stable:

    from peerkeeper.core import DependencyMerger, PeerDependencyAnalyzer
"""

from __future__ import annotations

from peerkeeper.core.cache import DiskCache, MemoryCache, MetadataCache
from peerkeeper.core.registry import HttpRegistry, NpmCliRegistry, RegistryClient, create_registry
from peerkeeper.core.resolver import PackageMetadataResolver
from peerkeeper.core.compatibility import (
    ManualResolutionRequired,
    ResolutionFailed,
    Resolved,
    Strategy,
    analyze_compatibility,
    resolve,
    satisfies,
)
from peerkeeper.core.known_issues import check_known_incompatibilities
from peerkeeper.core.peer_analyzer import PeerDependencyAnalyzer
from peerkeeper.core.merger import DependencyMerger
from peerkeeper.core.templates import load_templates

__all__ = [
    "MetadataCache",
    "MemoryCache",
    "DiskCache",
    "RegistryClient",
    "HttpRegistry",
    "NpmCliRegistry",
    "create_registry",
    "PackageMetadataResolver",
    "Strategy",
    "Resolved",
    "ManualResolutionRequired",
    "ResolutionFailed",
    "satisfies",
    "analyze_compatibility",
    "resolve",
    "check_known_incompatibilities",
    "PeerDependencyAnalyzer",
    "DependencyMerger",
    "load_templates",
]
