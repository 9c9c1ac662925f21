"""Tests for the ImageAsset codec helpers."""

import base64
from io import BytesIO

import pytest
from PIL import Image

from conftest import make_asset, make_png
from roomshaper.pipeline.codec import (
    decode_data_url,
    decode_upload,
    downscale_reference,
    image_dimensions,
    split_data_url,
)
from roomshaper.pipeline.errors import ImageDecodeError
from roomshaper.pipeline.models import ImageAsset


class TestDecode:
    def test_decode_upload_keeps_image_content_type(self):
        asset = decode_upload(make_png(), "image/webp")
        assert asset.mime_type == "image/webp"

    def test_decode_upload_derives_type_from_format(self):
        asset = decode_upload(make_png(), "application/octet-stream")
        assert asset.mime_type == "image/png"

    @pytest.mark.parametrize("payload", [b"", b"definitely not an image"])
    def test_decode_upload_rejects_garbage(self, payload):
        with pytest.raises(ImageDecodeError):
            decode_upload(payload, "image/png")

    def test_split_data_url(self):
        raw = make_png()
        url = f"data:image/png;base64,{base64.b64encode(raw).decode()}"

        assert split_data_url(url) == (raw, "image/png")
        assert split_data_url(base64.b64encode(raw).decode()) == (raw, None)

    def test_split_data_url_does_not_validate_image(self):
        url = f"data:image/png;base64,{base64.b64encode(b'hello').decode()}"
        assert split_data_url(url) == (b"hello", "image/png")

    @pytest.mark.parametrize("value", ["data:image/png;base64", "!!!not-base64!!!"])
    def test_split_data_url_rejects_malformed(self, value):
        with pytest.raises(ImageDecodeError):
            split_data_url(value)

    def test_decode_data_url_round_trip(self):
        asset = make_asset(30, 20)
        decoded = decode_data_url(asset.to_data_url())

        assert decoded == asset
        assert image_dimensions(decoded) == (30, 20)


class TestDownscale:
    def test_large_reference_is_shrunk_keeping_aspect(self):
        result = downscale_reference(make_asset(2048, 1024))

        assert image_dimensions(result) == (512, 256)
        assert result.mime_type == "image/png"

    def test_tall_reference(self):
        result = downscale_reference(make_asset(600, 1200))
        assert image_dimensions(result) == (256, 512)

    def test_small_reference_passes_through(self):
        asset = make_asset(200, 100)
        assert downscale_reference(asset) is asset

    def test_jpeg_reference_stays_jpeg(self):
        output = BytesIO()
        Image.new("RGB", (1000, 500), (1, 2, 3)).save(output, format="JPEG")
        asset = ImageAsset(data=output.getvalue(), mime_type="image/jpeg")

        result = downscale_reference(asset)

        assert result.mime_type == "image/jpeg"
        assert Image.open(BytesIO(result.data)).format == "JPEG"
        assert image_dimensions(result) == (512, 256)
