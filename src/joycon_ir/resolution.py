"""IR sensor resolution presets."""

from dataclasses import dataclass
from typing import Dict

from .protocol import FRAGMENT_SIZE


@dataclass(frozen=True)
class ResolutionProfile:
    """Frame geometry and sensor setup for one vertical resolution.

    ``max_fragment`` is the 0-based index of the last 300-byte fragment of a
    frame. ``binning`` is written to sensor register 0x002E.
    """

    width: int
    height: int
    max_fragment: int
    binning: int

    @property
    def fragment_count(self) -> int:
        return self.max_fragment + 1

    @property
    def frame_size(self) -> int:
        return self.width * self.height

    @property
    def supports_recovery(self) -> bool:
        """Whether missed fragments may be re-requested at this resolution."""
        return self.max_fragment != MIN_MAX_FRAGMENT


PROFILES: Dict[int, ResolutionProfile] = {
    240: ResolutionProfile(320, 240, 0xFF, 0x00),  # full pixel array
    120: ResolutionProfile(160, 120, 0x3F, 0b01010000),  # binning 2x2
    60: ResolutionProfile(80, 60, 0x0F, 0b01100100),  # binning 4x2, skipping 1x2
    30: ResolutionProfile(40, 30, 0x03, 0b01101001),  # binning 4x2, skipping 2x4
}

MIN_MAX_FRAGMENT = min(p.max_fragment for p in PROFILES.values())


def check_coverage(profiles: Dict[int, ResolutionProfile]) -> None:
    """Raise ``ValueError`` unless every profile's fragments fill its frame exactly."""
    for resolution, profile in profiles.items():
        if profile.fragment_count * FRAGMENT_SIZE != profile.frame_size:
            raise ValueError(
                f"{resolution}p: {profile.fragment_count} fragments of {FRAGMENT_SIZE} bytes "
                f"do not cover a {profile.frame_size}-byte frame")


check_coverage(PROFILES)


def select_profile(resolution: int) -> ResolutionProfile:
    """Profile for a vertical *resolution* of 240, 120, 60 or 30."""
    try:
        return PROFILES[resolution]
    except KeyError:
        supported = ", ".join(str(r) for r in sorted(PROFILES, reverse=True))
        raise ValueError(
            f"Unsupported IR resolution {resolution!r}; expected one of {supported}"
        ) from None
