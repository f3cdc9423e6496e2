"""
Stage progress bands.

Each stage owns a slice of the 0-100 progress bar proportional to its
weight. When the avatar stage will not run, its weight is handed to
composite and upload in proportion to their own weights.
"""

from typing import Dict, List, Mapping, Tuple

STAGE_ORDER: Tuple[str, ...] = (
    "script", "images", "enhance", "motion", "voice", "avatar", "composite", "upload"
)

STAGE_LABELS = {
    "script": "Writing script",
    "images": "Generating scene images",
    "enhance": "Enhancing images",
    "motion": "Animating scenes",
    "voice": "Synthesizing narration",
    "avatar": "Creating talking avatar",
    "composite": "Compositing video",
    "upload": "Uploading video",
}


def active_stages(include_avatar: bool) -> List[str]:
    return [stage for stage in STAGE_ORDER if include_avatar or stage != "avatar"]


def stage_bands(weights: Mapping[str, int], include_avatar: bool) -> Dict[str, Tuple[float, float]]:
    """
    (start, end) percentage per active stage. The last band ends at exactly 100.
    """
    effective = {stage: float(weights[stage]) for stage in STAGE_ORDER}
    if not include_avatar:
        avatar = effective.pop("avatar")
        share = effective["composite"] + effective["upload"]
        if share > 0:
            composite_part = avatar * effective["composite"] / share
            effective["composite"] += composite_part
            effective["upload"] += avatar - composite_part
        else:
            effective["upload"] += avatar

    total = sum(effective.values())
    bands: Dict[str, Tuple[float, float]] = {}
    cumulative = 0.0
    stages = active_stages(include_avatar)
    for stage in stages:
        start = cumulative / total * 100
        cumulative += effective[stage]
        bands[stage] = (start, cumulative / total * 100)
    last = stages[-1]
    bands[last] = (bands[last][0], 100.0)
    return bands


class ProgressTracker:
    """Maps stage positions onto a progress value that never goes down."""

    def __init__(self, bands: Dict[str, Tuple[float, float]], start: int = 0):
        self.bands = bands
        self.current = max(0, min(100, start))

    def advance(self, value: float) -> int:
        """Move to `value` unless that would go backwards. Returns the current value."""
        self.current = max(self.current, min(100, int(value)))
        return self.current

    def stage_start(self, stage: str) -> int:
        return self.advance(self.bands[stage][0])

    def within(self, stage: str, fraction: float) -> int:
        start, end = self.bands[stage]
        fraction = min(1.0, max(0.0, fraction))
        return self.advance(start + (end - start) * fraction)

    def stage_end(self, stage: str) -> int:
        return self.advance(self.bands[stage][1])
