import pytest

from joycon_ir.protocol import FRAGMENT_SIZE
from joycon_ir.resolution import (
    MIN_MAX_FRAGMENT, PROFILES, ResolutionProfile, check_coverage, select_profile)


@pytest.mark.parametrize("resolution,width,height,max_fragment", [
    (240, 320, 240, 0xFF),
    (120, 160, 120, 0x3F),
    (60, 80, 60, 0x0F),
    (30, 40, 30, 0x03),
])
def test_profiles(resolution, width, height, max_fragment):
    profile = select_profile(resolution)
    assert (profile.width, profile.height, profile.max_fragment) == (width, height, max_fragment)


def test_fragments_cover_frame_exactly():
    for profile in PROFILES.values():
        assert profile.fragment_count * FRAGMENT_SIZE == profile.frame_size
    check_coverage(PROFILES)


def test_coverage_check_rejects_short_profile():
    with pytest.raises(ValueError, match="do not cover"):
        check_coverage({30: ResolutionProfile(40, 30, 0x02, 0)})


def test_recovery_disabled_only_at_smallest_profile():
    assert MIN_MAX_FRAGMENT == 0x03
    assert not select_profile(30).supports_recovery
    assert all(select_profile(r).supports_recovery for r in (240, 120, 60))


@pytest.mark.parametrize("resolution", [0, 100, 480, "240"])
def test_unsupported_resolution(resolution):
    with pytest.raises(ValueError, match="Unsupported IR resolution"):
        select_profile(resolution)
