"""Known pairwise package incompatibilities.

A small table of package pairs that are known to break when their
versions drift apart. The merger checks it against the merged
dependency set after conflict resolution.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Mapping, Sequence

from semantic_version import Version

from peerkeeper.utils.logger import get_logger
from peerkeeper.utils.version_utils import coerce

logger = get_logger("known_issues")

__all__ = ["KnownIncompatibility", "KnownIssue", "KNOWN_INCOMPATIBILITIES", "check_known_incompatibilities"]


@dataclass(frozen=True)
class KnownIncompatibility:
    """One rule: ``broken(first, second)`` is True when the pair clashes."""

    first: str
    second: str
    broken: Callable[[Version, Version], bool]
    recommendation: str


@dataclass(frozen=True)
class KnownIssue:
    """A rule that fired against a dependency set."""

    first: str
    first_version: str
    second: str
    second_version: str
    recommendation: str

    @property
    def package(self) -> str:
        return f"{self.first} + {self.second}"

    @property
    def message(self) -> str:
        return (
            f"Known incompatibility detected: {self.first}@{self.first_version} "
            f"with {self.second}@{self.second_version}"
        )


KNOWN_INCOMPATIBILITIES: Sequence[KnownIncompatibility] = (
    KnownIncompatibility(
        "react",
        "@types/react",
        lambda react, types: react.major != types.major,
        "Ensure React and @types/react have matching major versions",
    ),
    KnownIncompatibility(
        "next",
        "react",
        lambda next_, react: next_.major >= 14 and react.major < 18,
        "Next.js 14+ requires React 18 or higher",
    ),
    KnownIncompatibility(
        "react",
        "react-dom",
        lambda react, dom: react.major != dom.major,
        "Ensure react and react-dom have matching major versions",
    ),
)


def check_known_incompatibilities(
    dependencies: Mapping[str, str],
    rules: Sequence[KnownIncompatibility] = KNOWN_INCOMPATIBILITIES,
) -> List[KnownIssue]:
    """Evaluate ``rules`` in order against ``dependencies``.

    Pairs whose versions cannot be coerced, and rules that raise, count
    as compatible.

    Example::

        >>> issues = check_known_incompatibilities({"react": "^17.0.2", "react-dom": "^18.2.0"})
        >>> issues[0].package
        'react + react-dom'
    """
    issues: List[KnownIssue] = []

    for rule in rules:
        if rule.first not in dependencies or rule.second not in dependencies:
            continue

        first_range = dependencies[rule.first]
        second_range = dependencies[rule.second]
        first = coerce(first_range)
        second = coerce(second_range)
        if first is None or second is None:
            continue

        try:
            broken = rule.broken(first, second)
        except (TypeError, ValueError, AttributeError) as exc:
            logger.debug("Rule %s + %s failed, treating as compatible: %s", rule.first, rule.second, exc)
            continue

        if broken:
            issues.append(
                KnownIssue(rule.first, first_range, rule.second, second_range, rule.recommendation)
            )

    return issues
