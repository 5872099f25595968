import asyncio
from unittest.mock import patch

import cloudinary.exceptions
import pytest

from imagecraft import provider as provider_module
from imagecraft.config import settings
from imagecraft.exceptions import ProviderConfigError, ProviderError, UploadTimeoutError
from imagecraft.provider import CloudinaryProvider, get_provider, public_id_from_url


def _cloudinary(timeout_sec=30.0):
    return CloudinaryProvider("demo", "key", "secret", timeout_sec=timeout_sec)


class TestPublicIdFromUrl:
    @pytest.mark.parametrize("url,expected", [
        ("https://res.cloudinary.com/demo/image/upload/v1712345/compressed-images/abc.webp",
         "compressed-images/abc"),
        ("https://res.cloudinary.com/demo/image/upload/q_60,f_webp/v1/compressed-images/abc.jpg",
         "compressed-images/abc"),
        ("https://res.cloudinary.com/demo/image/upload/sample.png", "sample"),
        ("https://example.com/not/a/provider/url.png", None),
        ("https://res.cloudinary.com/demo/image/upload/", None),
    ])
    def test_extracts_public_id(self, url, expected) -> None:
        assert public_id_from_url(url) == expected


class TestCloudinaryProvider:
    def test_transform_builds_delivery_url(self) -> None:
        url = _cloudinary().transform("folder/sample", format="webp", quality=70)

        assert url.startswith("https://res.cloudinary.com/demo/image/upload/")
        assert "q_70" in url
        assert url.endswith("folder/sample.webp")

    def test_upload_maps_response(self) -> None:
        res = {
            "secure_url": "https://res.cloudinary.com/demo/image/upload/v1/x/y.jpg",
            "public_id": "x/y",
            "bytes": 1234,
            "width": 10,
            "height": 20,
            "format": "jpg",
            "tags": ["cat"],
        }
        with patch("cloudinary.uploader.upload", return_value=res) as upload:
            out = asyncio.run(_cloudinary().upload(b"data", folder="x"))

        assert out.public_id == "x/y"
        assert out.bytes == 1234
        assert out.tags == ["cat"]
        kwargs = upload.call_args.kwargs
        assert kwargs["folder"] == "x"
        assert kwargs["cloud_name"] == "demo"

    def test_upload_malformed_response(self) -> None:
        with patch("cloudinary.uploader.upload", return_value={"bytes": 1}):
            with pytest.raises(ProviderError, match="Malformed"):
                asyncio.run(_cloudinary().upload(b"data"))

    def test_sdk_error_becomes_provider_error(self) -> None:
        with patch("cloudinary.uploader.upload", side_effect=cloudinary.exceptions.Error("Invalid image file")):
            with pytest.raises(ProviderError, match="Invalid image file"):
                asyncio.run(_cloudinary().upload(b"data"))

    def test_slow_provider_times_out(self) -> None:
        async def never_returns(fn, *args, **kwargs):
            await asyncio.sleep(5)

        with patch.object(provider_module, "run_in_threadpool", never_returns):
            with pytest.raises(UploadTimeoutError) as exc_info:
                asyncio.run(_cloudinary(timeout_sec=0.05).upload(b"data"))

        assert exc_info.value.status_code == 504

    @pytest.mark.parametrize("result", ["ok", "not found"])
    def test_delete_is_idempotent(self, result) -> None:
        with patch("cloudinary.uploader.destroy", return_value={"result": result}) as destroy:
            assert asyncio.run(_cloudinary().delete("x/y")) is True

        assert destroy.call_args.args == ("x/y",)
        assert destroy.call_args.kwargs["invalidate"] is True

    def test_delete_failure_raises(self) -> None:
        with patch("cloudinary.uploader.destroy", return_value={"result": "error"}):
            with pytest.raises(ProviderError, match="Failed to delete image"):
                asyncio.run(_cloudinary().delete("x/y"))


class TestGetProvider:
    def test_missing_credentials(self, monkeypatch) -> None:
        monkeypatch.setattr(provider_module, "_provider_singleton", None)
        monkeypatch.setattr(settings, "CLOUDINARY_API_KEY", None)

        with pytest.raises(ProviderConfigError):
            get_provider()

    def test_configured(self, monkeypatch) -> None:
        monkeypatch.setattr(provider_module, "_provider_singleton", None)
        monkeypatch.setattr(settings, "CLOUDINARY_CLOUD_NAME", "demo")
        monkeypatch.setattr(settings, "CLOUDINARY_API_KEY", "key")
        monkeypatch.setattr(settings, "CLOUDINARY_API_SECRET", "secret")

        p = get_provider()

        assert isinstance(p, CloudinaryProvider)
        assert get_provider() is p
