from telekinesis.core.device_match import best_profile_for_device, match_score
from telekinesis.core.model import ActuatorSpec, CapabilityKind, DetectedDevice, MatchRules, Profile, TransportSpec


def _profile(profile_id: str, name_tokens: tuple[str, ...], address_prefixes: tuple[str, ...]) -> Profile:
    return Profile(
        id=profile_id,
        name=profile_id,
        match=MatchRules(name_contains=name_tokens, address_prefix=address_prefixes),
        transport=TransportSpec(service_uuid="fff0", write_char_uuid="fff2"),
        actuators={CapabilityKind.VIBRATE: ActuatorSpec(kind=CapabilityKind.VIBRATE, command="V:{level};")},
    )


def test_match_score_prefers_combined_match() -> None:
    device = DetectedDevice(address="C4:4F:33:00:11:22", name="LVS-Lush")
    profile = _profile("p1", ("LVS-",), ("C4:4F:33",))
    assert match_score(device, profile) == (3, 4)


def test_best_profile_prefers_name_over_address_only() -> None:
    device = DetectedDevice(address="C4:4F:33:00:11:22", name="LVS-Lush")
    name_profile = _profile("name", ("lvs-",), ("AA:BB:CC",))
    address_profile = _profile("address", ("Other",), ("C4:4F:33",))

    picked = best_profile_for_device(device, {"name": name_profile, "address": address_profile})
    assert picked is not None
    assert picked.id == "name"


def test_longest_name_token_wins() -> None:
    device = DetectedDevice(address="00:00:00:00:00:01", name="LVS-Edge21")
    vendor = _profile("vendor", ("LVS-",), ())
    model = _profile("model", ("LVS-Edge",), ())

    picked = best_profile_for_device(device, {"model": model, "vendor": vendor})
    assert picked is not None
    assert picked.id == "model"


def test_no_match_returns_none() -> None:
    device = DetectedDevice(address="00:00:00:00:00:00", name="Unknown")
    profile = _profile("p1", ("LVS-",), ("C4:4F:33",))
    assert best_profile_for_device(device, {"p1": profile}) is None
