"""
Fallback assets.

Fallbacks are descriptors rather than files: the compositor renders them
with ffmpeg's built-in sources (or by looping a still), so producing one
never touches the network and cannot fail.
"""

from typing import Dict, Optional, Tuple
from urllib.parse import parse_qsl, quote, urlencode

from shared.models.scene import AssetRef

FALLBACK_SCHEME = "fallback:"
FALLBACK_SOURCE = "fallback"


def is_fallback_uri(uri: Optional[str]) -> bool:
    return bool(uri) and uri.startswith(FALLBACK_SCHEME)


def parse_fallback(uri: str) -> Tuple[str, Dict[str, str]]:
    """Split `fallback:kind?key=value` into (kind, params)."""
    if not is_fallback_uri(uri):
        raise ValueError(f"Not a fallback uri: {uri}")
    body = uri[len(FALLBACK_SCHEME):]
    kind, _, query = body.partition("?")
    return kind, dict(parse_qsl(query))


def _fallback_uri(kind: str, **params) -> str:
    if not params:
        return f"{FALLBACK_SCHEME}{kind}"
    return f"{FALLBACK_SCHEME}{kind}?{urlencode(params, quote_via=quote)}"


def placeholder_image() -> AssetRef:
    """Solid frame used when no image could be generated."""
    return AssetRef(uri=_fallback_uri("placeholder"), is_fallback=True, source=FALLBACK_SOURCE)


def identity_enhancement(image: AssetRef) -> AssetRef:
    """Enhancement fallback: the original image, flagged as a fallback."""
    return AssetRef(uri=image.uri, is_fallback=True, source=FALLBACK_SOURCE)


def still_hold(image: Optional[AssetRef], duration: float) -> AssetRef:
    """Static-hold clip of the last good image for `duration` seconds."""
    image_uri = image.uri if image else placeholder_image().uri
    return AssetRef(
        uri=_fallback_uri("still", image=image_uri, duration=f"{duration:.3f}"),
        is_fallback=True,
        source=FALLBACK_SOURCE,
    )


def silence(duration: float) -> AssetRef:
    """Silent audio matching the scene duration."""
    return AssetRef(
        uri=_fallback_uri("silence", duration=f"{duration:.3f}"),
        is_fallback=True,
        source=FALLBACK_SOURCE,
    )
