"""Named ranking buckets and the profiles that select them.

A bucket is a predicate over a measurement plus a size cap. Every bucket is
ordered by aggregated volume descending; ties keep first-seen order.

Profiles:
  volume   -- topVolume(10), no exclusion history
  momentum -- topVolume(20), gaining(20), losing(20), with exclusion history
  pressure -- topVolume(10), sellingPressure(10), with exclusion history
"""

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from volbot.models import TimeframeMeasurement

TOP_VOLUME = "topVolume"
GAINING = "gaining"
LOSING = "losing"
SELLING_PRESSURE = "sellingPressure"


@dataclass(frozen=True)
class BucketRule:
    """Selection rule for one named bucket."""

    name: str
    predicate: Callable[[TimeframeMeasurement], bool]
    cap: int
    apply_exclusions: bool = True


@dataclass(frozen=True)
class BucketProfile:
    """The set of buckets published per timeframe, and whether history is tracked."""

    name: str
    rules: tuple[BucketRule, ...]
    track_history: bool

    @property
    def bucket_names(self) -> tuple[str, ...]:
        return tuple(r.name for r in self.rules)


def _any(m: TimeframeMeasurement) -> bool:
    return True


def _rising(m: TimeframeMeasurement) -> bool:
    return m.price_change_pct > 0


def _falling(m: TimeframeMeasurement) -> bool:
    return m.price_change_pct < 0


PROFILES: dict[str, BucketProfile] = {
    "volume": BucketProfile(
        name="volume",
        rules=(BucketRule(TOP_VOLUME, _any, 10, apply_exclusions=False),),
        track_history=False,
    ),
    "momentum": BucketProfile(
        name="momentum",
        rules=(
            BucketRule(TOP_VOLUME, _any, 20),
            BucketRule(GAINING, _rising, 20),
            BucketRule(LOSING, _falling, 20),
        ),
        track_history=True,
    ),
    "pressure": BucketProfile(
        name="pressure",
        rules=(
            BucketRule(TOP_VOLUME, _any, 10),
            BucketRule(SELLING_PRESSURE, _falling, 10),
        ),
        track_history=True,
    ),
}


def get_profile(name: str) -> BucketProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(
            f"Unknown bucket profile {name!r}, expected one of {list(PROFILES)}"
        ) from None


def rank_by_volume(
    measurements: Iterable[TimeframeMeasurement], cap: int
) -> tuple[TimeframeMeasurement, ...]:
    """Sort by volume descending (stable) and truncate to cap."""
    ordered = sorted(measurements, key=lambda m: m.volume, reverse=True)
    return tuple(ordered[:cap])


def build_buckets(
    measurements: Sequence[TimeframeMeasurement],
    rules: Iterable[BucketRule],
    is_excluded: Callable[[str], bool],
) -> dict[str, tuple[TimeframeMeasurement, ...]]:
    """Partition measurements into every bucket of a profile.

    Args:
        measurements: Candidates in first-seen order.
        rules: Bucket rules to apply.
        is_excluded: Returns True for symbols whose base asset is excluded.
    """
    filtered = [m for m in measurements if not is_excluded(m.symbol)]

    buckets: dict[str, tuple[TimeframeMeasurement, ...]] = {}
    for rule in rules:
        pool = filtered if rule.apply_exclusions else measurements
        buckets[rule.name] = rank_by_volume(
            (m for m in pool if rule.predicate(m)), rule.cap
        )
    return buckets
