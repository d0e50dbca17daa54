from __future__ import annotations

from fleet_rollout.core.errors import MalformedVersionError


def parse_version(version: str) -> tuple[int, ...]:
    if not isinstance(version, str):
        raise MalformedVersionError(version)
    text = version.strip()
    if not text:
        raise MalformedVersionError(version)

    components: list[int] = []
    for part in text.split("."):
        if not (part.isascii() and part.isdigit()):
            raise MalformedVersionError(version)
        components.append(int(part))
    return tuple(components)


def compare_versions(left: str, right: str) -> int:
    """Compare dotted numeric versions; missing trailing components count as 0."""
    left_parts = parse_version(left)
    right_parts = parse_version(right)
    width = max(len(left_parts), len(right_parts))
    for index in range(width):
        left_value = left_parts[index] if index < len(left_parts) else 0
        right_value = right_parts[index] if index < len(right_parts) else 0
        if left_value < right_value:
            return -1
        if left_value > right_value:
            return 1
    return 0


def is_older_version(installed: str, target: str) -> bool:
    return compare_versions(installed, target) < 0
