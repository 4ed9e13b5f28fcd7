import pytest
from pydantic import ValidationError

from dosetrack.core.timing_profiles import (
    CATEGORY_PROFILES,
    DEFAULT_PROFILE,
    DEFAULT_REGISTRY,
    PHASE_ORDER,
    SUBSTANCE_PROFILES,
    PhaseSpec,
    ProfileRegistry,
    TimingProfile,
    get_profile,
    normalize_category,
    safety_recommendations,
)


def test_lookup_by_substance_name_is_case_insensitive():
    assert get_profile("Alprazolam").key == "alprazolam"
    assert get_profile("  MDMA ").key == "mdma"


def test_spelling_aliases_resolve_to_substance():
    assert get_profile("amfetamin").key == "amphetamine"
    assert get_profile("Xanax").key == "alprazolam"
    assert get_profile("Ritalin").key == "methylphenidate"


def test_category_fallback_with_alias():
    assert get_profile("Somepam", "Benzodiazepiner").key == "Benzodiazepines"
    assert get_profile("Something", "stimulants").key == "Stimulants"


def test_name_can_be_a_category():
    assert get_profile("Opioids").key == "Opioids"


def test_unknown_falls_back_to_default():
    assert get_profile("no such thing") is DEFAULT_PROFILE
    assert get_profile(None) is DEFAULT_PROFILE
    assert get_profile("", "Nootropics") is DEFAULT_PROFILE


def test_substance_match_wins_over_category():
    assert get_profile("cocaine", "Benzodiazepines").key == "cocaine"


def test_normalize_category():
    assert normalize_category("Sentralstimulerende") == "Stimulants"
    assert normalize_category("OPIOIDER") == "Opioids"
    assert normalize_category(" Custom ") == "Custom"


@pytest.mark.parametrize(
    "profile",
    list(SUBSTANCE_PROFILES.values()) + list(CATEGORY_PROFILES.values()) + [DEFAULT_PROFILE],
    ids=lambda p: p.key,
)
def test_total_covers_listed_phases(profile):
    listed = sum(spec.duration_minutes for _, spec in profile.phases())
    assert profile.total_minutes >= listed
    assert profile.boundaries()[-1] == ("comedown", profile.total_minutes)


def test_known_profile_values():
    cocaine = get_profile("cocaine")
    assert cocaine.onset.duration_minutes == 11
    assert cocaine.total_minutes == 111
    assert cocaine.offset_threshold_minutes == 31
    assert DEFAULT_PROFILE.boundaries() == [
        ("onset", 45), ("peak", 135), ("offset", 315), ("comedown", 435),
    ]


def test_total_shorter_than_phases_is_rejected():
    spec = PhaseSpec(duration_minutes=60)
    with pytest.raises(ValidationError):
        TimingProfile(key="bad", onset=spec, peak=spec, offset=spec, total_minutes=100)


def test_total_defaults_to_sum_and_may_exceed_it():
    spec = PhaseSpec(duration_minutes=10)
    assert TimingProfile(key="x", onset=spec, peak=spec, offset=spec).total_minutes == 30
    long_tail = TimingProfile(key="y", onset=spec, peak=spec, offset=spec, total_minutes=90)
    assert long_tail.boundaries()[-1] == ("comedown", 90)


def test_profiles_are_immutable():
    with pytest.raises(ValidationError):
        DEFAULT_PROFILE.total_minutes = 1


def test_safety_info_serialises_with_alias():
    data = get_profile("ketamine").model_dump(by_alias=True)
    assert data["totalMinutes"] == 132
    assert set(PHASE_ORDER) <= set(data["safetyInfo"])
    assert data["safetyInfo"]["general"].startswith("Use in safe setting")


def test_safety_recommendations():
    rec = safety_recommendations("mdma", "peak")
    assert "Take breaks" in rec["message"]
    assert "temperature" in rec["vitals"]
    assert rec["general"]

    finished = safety_recommendations("mdma", "finished")
    assert finished["message"] == "Effects minimal - Safe to rest"


def test_custom_registry_is_independent():
    spec = PhaseSpec(duration_minutes=5)
    profile = TimingProfile(key="quick", onset=spec, peak=spec, offset=spec)
    registry = ProfileRegistry({"Quickamine": profile}, {}, DEFAULT_PROFILE)
    assert registry.get_profile("quickamine") is profile
    assert DEFAULT_REGISTRY.get_profile("quickamine") is DEFAULT_PROFILE


def test_list_profiles():
    listed = DEFAULT_REGISTRY.list_profiles()
    assert [p.key for p in listed["categories"]] == ["Benzodiazepines", "Opioids", "Stimulants"]
    assert len(listed["substances"]) == len(SUBSTANCE_PROFILES)
