"""Device-to-profile matching logic.

BLE addresses are often randomized (and are platform UUIDs on macOS), so a
name match outranks an address-prefix match. Among name matches the longest
matching token wins, letting a model-specific profile ("LVS-Edge") beat a
vendor-wide one ("LVS-").
"""

from __future__ import annotations

from telekinesis.core.model import DetectedDevice, Profile


def _address_prefix_match(device_address: str, profile: Profile) -> bool:
    upper_address = device_address.upper()
    return any(upper_address.startswith(prefix) for prefix in profile.match.address_prefix)


def _longest_name_token(device_name: str, profile: Profile) -> int:
    lower_name = device_name.lower()
    return max(
        (len(token) for token in profile.match.name_contains if token.lower() in lower_name),
        default=0,
    )


def match_score(device: DetectedDevice, profile: Profile) -> tuple[int, int]:
    token_length = _longest_name_token(device.name, profile)
    address_match = _address_prefix_match(device.address, profile)
    if token_length and address_match:
        return 3, token_length
    if token_length:
        return 2, token_length
    if address_match:
        return 1, 0
    return 0, 0


def best_profile_for_device(device: DetectedDevice, profiles: dict[str, Profile]) -> Profile | None:
    best: Profile | None = None
    best_score = (0, 0)
    for profile in profiles.values():
        score = match_score(device, profile)
        if score > best_score:
            best = profile
            best_score = score
    return best
