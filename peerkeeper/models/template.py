"""
Template declaration model for peerkeeper.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from peerkeeper.models.manifest import PackageRef


@dataclass(frozen=True)
class TemplateDeclaration:
    """Packages one feature template asks for.

    Args:
        template_id: Identifier used as the source in merge conflicts.
        packages: Runtime dependencies, in declaration order.
        dev_packages: Development dependencies.
        peer_dependencies: Peer dependencies the template exposes.
    """

    template_id: str
    packages: List[PackageRef] = field(default_factory=list)
    dev_packages: List[PackageRef] = field(default_factory=list)
    peer_dependencies: List[PackageRef] = field(default_factory=list)

    @classmethod
    def of(
        cls,
        template_id: str,
        packages: Optional[Dict[str, str]] = None,
        dev_packages: Optional[Dict[str, str]] = None,
        peer_dependencies: Optional[Dict[str, str]] = None,
    ) -> "TemplateDeclaration":
        """Build a declaration from plain ``{name: range}`` mappings.

        Example::

            >>> t = TemplateDeclaration.of("web", {"react": "^18.2.0"})
            >>> t.packages[0].version_range
            '^18.2.0'
        """

        def refs(mapping: Optional[Dict[str, str]]) -> List[PackageRef]:
            return [PackageRef(name, rng) for name, rng in (mapping or {}).items()]

        return cls(
            template_id=template_id,
            packages=refs(packages),
            dev_packages=refs(dev_packages),
            peer_dependencies=refs(peer_dependencies),
        )

    def to_json(self) -> Dict[str, Any]:
        def entries(refs: List[PackageRef]) -> List[Dict[str, str]]:
            return [{"name": r.name, "version": r.version_range} for r in refs]

        return {
            "id": self.template_id,
            "packages": entries(self.packages),
            "devPackages": entries(self.dev_packages),
            "peerDependencies": entries(self.peer_dependencies),
        }
