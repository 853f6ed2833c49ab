"""Tag normalization and tag-to-device matching.

Which rule applies is configuration (the ``tags`` section of the settings
file), not code: exact or substring comparison, case sensitivity, and
whether a device's own name counts as one of its tags.
"""

from __future__ import annotations

from collections.abc import Iterable

from telekinesis.core.model import TagMatchRules


def normalize_tag(tag: str, rules: TagMatchRules) -> str:
    normalized = tag.strip()
    return normalized if rules.case_sensitive else normalized.lower()


def normalize_tags(tags: Iterable[str], rules: TagMatchRules) -> tuple[str, ...]:
    """Trim, case-fold per rules, drop blanks and duplicates, keep order."""
    seen: set[str] = set()
    normalized: list[str] = []
    for tag in tags:
        value = normalize_tag(tag, rules)
        if not value or value in seen:
            continue
        seen.add(value)
        normalized.append(value)
    return tuple(normalized)


def _tag_match(wanted: str, candidate: str, rules: TagMatchRules) -> bool:
    if rules.match == "contains":
        return wanted in candidate or candidate in wanted
    return wanted == candidate


def device_matches_tags(
    device_name: str,
    device_tags: Iterable[str],
    wanted: Iterable[str],
    rules: TagMatchRules,
) -> bool:
    candidates = list(normalize_tags(device_tags, rules))
    if rules.match_device_name:
        candidates.extend(normalize_tags((device_name,), rules))
    if not candidates:
        return False
    return any(
        _tag_match(tag, candidate, rules)
        for tag in normalize_tags(wanted, rules)
        for candidate in candidates
    )
