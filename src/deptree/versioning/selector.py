"""npm-style version selection using semantic versioning."""

import logging
from typing import Dict, Iterable, Optional

import semantic_version

logger = logging.getLogger(__name__)


def parse_version(text: str) -> Optional[semantic_version.Version]:
    """parse a published version string, returning None when it is not valid semver."""
    try:
        return semantic_version.Version(text.strip())
    except (ValueError, AttributeError):
        return None


def is_exact_version(text: str) -> bool:
    """whether `text` names one concrete version rather than a range."""
    return parse_version(text) is not None


def parse_range(range_expr: str) -> Optional[semantic_version.NpmSpec]:
    """
    parse an npm range expression.

    NpmSpec understands exact versions, ^ and ~ ranges, comparator chains,
    hyphen ranges, `||` unions and x-ranges. an empty range means any version.
    """
    expr = (range_expr or "").strip()
    if not expr:
        expr = "*"
    try:
        return semantic_version.NpmSpec(expr)
    except ValueError as e:
        logger.debug(f"unparseable range '{range_expr}': {e}")
        return None


def _parsed(available: Iterable[str]) -> Dict[semantic_version.Version, str]:
    parsed = {}
    for v in available:
        ver = parse_version(v)
        if ver is None:
            continue  # skip invalid versions
        parsed[ver] = v
    return parsed


def select_version(available: Iterable[str], range_expr: str) -> Optional[str]:
    """
    pick the highest available version satisfying `range_expr`.

    args:
        available: published version strings; entries that are not valid semver are ignored.
        range_expr: npm range expression.

    returns:
        the matching version string as published, or None when nothing matches.
    """
    spec = parse_range(range_expr)
    if spec is None:
        return None

    candidates = _parsed(available)
    matching = [ver for ver in candidates if spec.match(ver)]
    if not matching:
        return None
    return candidates[max(matching)]


def max_version(available: Iterable[str]) -> Optional[str]:
    """highest valid semantic version, ignoring range semantics."""
    candidates = _parsed(available)
    if not candidates:
        return None
    return candidates[max(candidates)]


def sort_versions(available: Iterable[str], reverse: bool = False):
    """valid versions in semver precedence order; invalid entries are dropped."""
    candidates = _parsed(available)
    return [candidates[v] for v in sorted(candidates, reverse=reverse)]
