"""
Composer configuration.

Output encoding parameters and canvas sizes.
"""
from typing import Tuple

# Video output settings
OUTPUT_VIDEO_CODEC = "libx264"
OUTPUT_AUDIO_CODEC = "aac"
OUTPUT_PIXEL_FORMAT = "yuv420p"
AUDIO_SAMPLE_RATE = 44100

# Ken Burns zoom on still holds
KEN_BURNS_ZOOM_STEP = 0.0015
KEN_BURNS_MAX_ZOOM = 1.2

# Avatar picture-in-picture
AVATAR_SIZE = 200
AVATAR_MARGIN = 20

# Title overlay
TITLE_SECONDS = 3.0

# Transition styles accepted by xfade
XFADE_TRANSITIONS = {"fade", "slideleft", "wiperight"}

PLACEHOLDER_COLOR = "black"

# Standard resolutions for each aspect ratio (1080p)
ASPECT_RATIO_DIMENSIONS = {
    "16:9": (1920, 1080),
    "9:16": (1080, 1920),
    "1:1": (1080, 1080),
    "4:3": (1440, 1080),
    "3:4": (1080, 1440),
}


def get_output_dimensions_from_aspect_ratio(aspect_ratio: str = "16:9") -> Tuple[int, int]:
    """
    Get output width and height from aspect ratio.

    Standard ratios map to fixed 1080p canvases; other ratios keep 1080 on
    the short side.

    Raises:
        ValueError: If aspect ratio is not in W:H form
    """
    if aspect_ratio in ASPECT_RATIO_DIMENSIONS:
        return ASPECT_RATIO_DIMENSIONS[aspect_ratio]

    try:
        width_ratio, height_ratio = (float(part) for part in aspect_ratio.split(":"))
    except ValueError as e:
        raise ValueError(f"Invalid aspect ratio format: {aspect_ratio}") from e
    if width_ratio <= 0 or height_ratio <= 0:
        raise ValueError(f"Invalid aspect ratio format: {aspect_ratio}")

    # Dimensions must be even for yuv420p
    if width_ratio >= height_ratio:
        return (int(1080 * width_ratio / height_ratio) // 2 * 2, 1080)
    return (1080, int(1080 * height_ratio / width_ratio) // 2 * 2)
