import json

import pytest
from PIL import Image

from imagecraft.exceptions import ProviderError, UploadValidationError
from imagecraft.main import app
from imagecraft.routes_tools import fallback_tags, provider_color
from imagecraft.security import InMemoryRateLimiter, get_rate_limiter


def _file(data: bytes, name: str = "photo.png", content_type: str = "image/png"):
    return {"file": (name, data, content_type)}


class TestImageOptimize:
    def test_auto_format_uses_fetch_format(self, api, provider, small_png) -> None:
        settings = {"width": 800, "height": 600, "quality": "auto", "format": "auto"}

        resp = api.post("/v1/image-optimize", files=_file(small_png), data={"settings": json.dumps(settings)})

        assert resp.status_code == 200
        body = resp.json()
        assert body["publicId"] == "optimized/img1"
        assert body["originalSize"] == len(small_png)
        upload = provider.uploads[0]
        assert upload["folder"] == "optimized"
        assert upload["transformation"] == [
            {"width": 800, "height": 600, "crop": "fill", "quality": "auto", "fetch_format": "auto"}
        ]
        assert "format" not in upload

    def test_explicit_format_and_quality(self, api, provider, small_png) -> None:
        settings = {"width": 100, "height": 100, "quality": 55, "format": "webp"}

        api.post("/v1/image-optimize", files=_file(small_png), data={"settings": json.dumps(settings)})

        assert provider.uploads[0]["format"] == "webp"
        assert provider.uploads[0]["transformation"][0]["quality"] == 55

    def test_missing_settings(self, api, provider, small_png) -> None:
        resp = api.post("/v1/image-optimize", files=_file(small_png))

        assert resp.status_code == 400
        assert resp.json()["error"] == "Missing optimization settings"
        assert provider.uploads == []

    @pytest.mark.parametrize("raw", ["{not json", '{"width": 0, "height": 10}', '{"width": 10}'])
    def test_invalid_settings(self, api, small_png, raw) -> None:
        resp = api.post("/v1/image-optimize", files=_file(small_png), data={"settings": raw})

        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid optimization settings"


class TestBackgroundRemove:
    def test_uploads_with_background_removal(self, api, provider, small_png) -> None:
        resp = api.post("/v1/background-remove", files=_file(small_png))

        assert resp.status_code == 200
        assert resp.json()["format"] == "png"
        assert provider.uploads[0]["transformation"] == [{"effect": "background_removal"}]
        assert provider.uploads[0]["folder"] == "background-removed"

    def test_rejects_non_image(self, api, provider) -> None:
        resp = api.post("/v1/background-remove", files=_file(b"plain text, definitely", "a.txt", "text/plain"))

        assert resp.status_code == 400
        assert resp.json()["error"].startswith("Invalid file type")
        assert provider.uploads == []

    def test_oversized_pixel_count_is_a_client_error(self, api, provider, small_png, monkeypatch) -> None:
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

        resp = api.post("/v1/background-remove", files=_file(small_png))

        assert resp.status_code == 400
        assert resp.json() == {"error": "Image dimensions are too large to process"}
        assert provider.uploads == []

    def test_dimensions_fall_back_to_decoded_upload(self, api, provider, small_png) -> None:
        provider.width = 0
        provider.height = 0

        body = api.post("/v1/background-remove", files=_file(small_png)).json()

        assert (body["width"], body["height"]) == (64, 64)


class TestFormatConvert:
    def test_converts_and_reports_original_format(self, api, provider, small_png) -> None:
        resp = api.post("/v1/format-convert", files=_file(small_png), data={"format": "WEBP", "quality": "80"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["originalFormat"] == "png"
        assert body["format"] == "webp"
        assert provider.uploads[0]["transformation"] == [{"quality": 80}]

    def test_default_quality_is_auto(self, api, provider, small_png) -> None:
        api.post("/v1/format-convert", files=_file(small_png), data={"format": "jpg"})

        assert provider.uploads[0]["transformation"] == [{"quality": "auto"}]

    @pytest.mark.parametrize("form,message", [
        ({}, "Missing required fields"),
        ({"format": "psd"}, "Unsupported target format: psd"),
        ({"format": "png", "quality": "0"}, "Quality must be between 1 and 100"),
        ({"format": "png", "quality": "high"}, "Quality must be a number or 'auto'"),
    ])
    def test_rejects_bad_fields(self, api, provider, small_png, form, message) -> None:
        resp = api.post("/v1/format-convert", files=_file(small_png), data=form)

        assert resp.status_code == 400
        assert resp.json()["error"] == message
        assert provider.uploads == []


class TestSocialResize:
    def test_preset_dimensions(self, api, provider, small_png) -> None:
        resp = api.post("/v1/social-resize", files=_file(small_png), data={"preset": "instagram-story"})

        assert resp.status_code == 200
        assert resp.json()["preset"] == "instagram-story"
        step = provider.uploads[0]["transformation"][0]
        assert (step["width"], step["height"]) == (1080, 1920)
        assert step["crop"] == "fill"
        assert provider.uploads[0]["folder"] == "social-resized"

    def test_custom_dimensions_in_preview_folder(self, api, provider, small_png) -> None:
        api.post(
            "/v1/social-resize",
            files=_file(small_png),
            data={"width": "300", "height": "200", "preview": "true"},
        )

        assert provider.uploads[0]["folder"] == "social-preview"
        assert provider.uploads[0]["transformation"][0]["width"] == 300

    def test_needs_preset_or_dimensions(self, api, provider, small_png) -> None:
        resp = api.post("/v1/social-resize", files=_file(small_png), data={"preset": "myspace"})

        assert resp.status_code == 400
        assert resp.json()["error"] == "Missing required fields"


class TestPassportResize:
    def test_default_preset(self, api, provider, small_png) -> None:
        resp = api.post("/v1/passport-resize", files=_file(small_png))

        assert resp.status_code == 200
        assert resp.json()["preset"] == "passport-india"
        upload = provider.uploads[0]
        assert upload["format"] == "jpg"
        assert upload["transformation"] == [
            {"effect": "background_removal"},
            {"width": 413, "height": 531, "crop": "thumb", "gravity": "face", "zoom": 0.75},
            {"background": "white"},
        ]

    def test_hex_background_and_zoom(self, api, provider, small_png) -> None:
        api.post(
            "/v1/passport-resize",
            files=_file(small_png),
            data={"preset": "passport-us", "backgroundColor": "#87CEEB", "zoom": "1.2"},
        )

        steps = provider.uploads[0]["transformation"]
        assert steps[1]["width"] == 600
        assert steps[1]["zoom"] == 1.2
        assert steps[2] == {"background": "rgb:87ceeb"}

    @pytest.mark.parametrize("form,message", [
        ({"preset": "passport-mars"}, "Unknown passport preset: passport-mars"),
        ({"zoom": "3"}, "Zoom must be between 0.3 and 2.0"),
        ({"backgroundColor": "url(evil)"}, "Invalid background color"),
    ])
    def test_rejects_bad_fields(self, api, provider, small_png, form, message) -> None:
        resp = api.post("/v1/passport-resize", files=_file(small_png), data=form)

        assert resp.status_code == 400
        assert resp.json()["error"] == message
        assert provider.uploads == []


class TestAutoTag:
    def test_requires_sign_in(self, api, provider, small_png) -> None:
        resp = api.post("/v1/auto-tag", files=_file(small_png), headers={"X-Return-To": "/tools/auto-tag"})

        assert resp.status_code == 401
        body = resp.json()
        assert body["error"] == "Please sign in to download"
        assert body["signInUrl"] == "/sign-in?redirect_url=%2Ftools%2Fauto-tag"
        assert provider.uploads == []

    def test_provider_tags(self, api, provider, small_png, auth_headers) -> None:
        provider.tags = ["cat", "animal"]

        resp = api.post("/v1/auto-tag", files=_file(small_png), headers=auth_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["tags"] == ["cat", "animal"]
        assert body["imageUrl"].endswith("auto-tagged/img1.jpg")
        assert body["message"] is None
        assert provider.uploads[0]["categorization"] == "google_tagging"

    def test_falls_back_without_tagging_add_on(self, api, provider, small_png, auth_headers) -> None:
        provider.upload_errors.append(ProviderError("categorization add-on not enabled"))

        resp = api.post("/v1/auto-tag", files=_file(small_png), headers=auth_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["tags"] == ["png", "thumbnail", "image", "digital", "upload"]
        assert "premium" in body["message"]
        assert "categorization" not in provider.uploads[1]


class TestRateLimit:
    def test_eleventh_request_is_throttled(self, api, small_png) -> None:
        limiter = InMemoryRateLimiter(10, 10)
        app.dependency_overrides[get_rate_limiter] = lambda: limiter

        codes = [api.post("/v1/background-remove", files=_file(small_png)).status_code for _ in range(11)]

        assert codes[:10] == [200] * 10
        assert codes[10] == 429

    def test_throttle_message(self, api) -> None:
        limiter = InMemoryRateLimiter(0, 10)
        app.dependency_overrides[get_rate_limiter] = lambda: limiter

        resp = api.post("/v1/image-compress")

        assert resp.status_code == 429
        assert resp.json() == {"error": "Too many requests. Please try again later."}


class TestHelpers:
    def test_fallback_tags_by_size(self) -> None:
        assert fallback_tags("big.jpg", 6 * 1024 * 1024)[:2] == ["photo", "high-resolution"]
        assert fallback_tags("mid.webp", 1024 * 1024)[:2] == ["webp", "standard-quality"]
        assert fallback_tags("", 100)[0] == "thumbnail"

    @pytest.mark.parametrize("value,expected", [
        ("white", "white"),
        ("#FFFFFF", "rgb:ffffff"),
        ("00ff00", "rgb:00ff00"),
        (" Blue ", "blue"),
    ])
    def test_provider_color(self, value, expected) -> None:
        assert provider_color(value) == expected

    def test_provider_color_rejects_garbage(self) -> None:
        with pytest.raises(UploadValidationError):
            provider_color("rgb(1,2,3)")
