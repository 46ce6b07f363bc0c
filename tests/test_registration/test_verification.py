"""Tests for check-in verification codes."""

import base64
import io

import pytest
from django.core.exceptions import ImproperlyConfigured
from django.test import override_settings
from PIL import Image

from concerto.registration.services.verification import (
    DATA_URL_PREFIX,
    build_checkin_url,
    decode_data_url,
    generate_verification_code,
)


@pytest.mark.unit
class TestBuildCheckinUrl:
    def test_uses_site_url_and_checkin_path(self) -> None:
        url = build_checkin_url("1234")
        assert url == "https://concert.example.org/dashboard/?registration=1234"

    def test_strips_trailing_slash_and_adds_leading_slash(self) -> None:
        with override_settings(
            CONCERTO={"site_url": "https://tickets.example.org/", "verification": {"checkin_path": "scan"}},
        ):
            assert build_checkin_url("abc") == "https://tickets.example.org/scan?registration=abc"

    def test_requires_site_url(self) -> None:
        with override_settings(CONCERTO={}):
            with pytest.raises(ImproperlyConfigured, match="site_url"):
                build_checkin_url("abc")


@pytest.mark.unit
class TestGenerateVerificationCode:
    def test_returns_png_data_url(self) -> None:
        code = generate_verification_code("https://concert.example.org/dashboard/?registration=1")
        assert code.startswith(DATA_URL_PREFIX)
        png = base64.b64decode(code[len(DATA_URL_PREFIX) :])
        assert png.startswith(b"\x89PNG")

    def test_is_deterministic(self) -> None:
        payload = "https://concert.example.org/dashboard/?registration=1"
        assert generate_verification_code(payload) == generate_verification_code(payload)

    def test_uses_configured_colours(self) -> None:
        code = generate_verification_code("hello")
        image = Image.open(io.BytesIO(decode_data_url(code))).convert("RGB")
        colours = {colour for _, colour in image.getcolors(maxcolors=16)}
        assert colours == {(0x3D, 0x1F, 0x15), (0xFF, 0xFF, 0xFF)}

    def test_scale_changes_image_size(self) -> None:
        small = Image.open(io.BytesIO(decode_data_url(generate_verification_code("hello"))))
        with override_settings(CONCERTO={"verification": {"scale": 16}}):
            large = Image.open(io.BytesIO(decode_data_url(generate_verification_code("hello"))))
        assert large.size[0] == small.size[0] * 2

    def test_empty_payload_rejected(self) -> None:
        with pytest.raises(ValueError, match="empty"):
            generate_verification_code("")


@pytest.mark.unit
class TestDecodeDataUrl:
    def test_rejects_other_prefix(self) -> None:
        with pytest.raises(ValueError, match="PNG data URL"):
            decode_data_url("data:image/jpeg;base64,AAAA")
