"""
Tests for fallback asset descriptors.
"""

import pytest

from shared.models.scene import AssetRef
from modules.generators.fallbacks import (
    identity_enhancement,
    is_fallback_uri,
    parse_fallback,
    placeholder_image,
    silence,
    still_hold,
)


def test_placeholder_image():
    asset = placeholder_image()

    assert asset.is_fallback
    assert asset.source == "fallback"
    assert parse_fallback(asset.uri) == ("placeholder", {})


def test_identity_enhancement_keeps_original_uri():
    image = AssetRef(uri="https://replicate.delivery/abc/out.png", source="image")

    enhanced = identity_enhancement(image)

    assert enhanced.uri == image.uri
    assert enhanced.is_fallback


def test_silence_carries_duration():
    kind, params = parse_fallback(silence(4.0).uri)

    assert kind == "silence"
    assert float(params["duration"]) == 4.0


def test_still_hold_preserves_image_url_with_query():
    image = AssetRef(uri="https://cdn.example.com/img.png?token=a&b=c", source="image")

    kind, params = parse_fallback(still_hold(image, 5.5).uri)

    assert kind == "still"
    assert params["image"] == image.uri
    assert float(params["duration"]) == 5.5


def test_still_hold_without_image_uses_placeholder():
    kind, params = parse_fallback(still_hold(None, 3).uri)

    assert kind == "still"
    assert is_fallback_uri(params["image"])


@pytest.mark.parametrize("uri,expected", [
    ("fallback:placeholder", True),
    ("https://x/a.png", False),
    ("", False),
    (None, False),
])
def test_is_fallback_uri(uri, expected):
    assert is_fallback_uri(uri) is expected


def test_parse_fallback_rejects_regular_uri():
    with pytest.raises(ValueError):
        parse_fallback("https://x/a.png")
