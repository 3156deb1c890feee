"""Tests for imaging.ingest — probe and decode."""

import io

import numpy as np
import pytest
from PIL import Image

from imaging.ingest import DecodeFailed, decode_image, lift_black, probe


def test_probe_reads_headers(sample_png_path):
    info = probe(str(sample_png_path))
    assert info["ok"] is True
    assert (info["width"], info["height"]) == (64, 48)
    assert info["format"] == "PNG"
    assert info["frames"] == 1


def test_probe_missing_file(tmp_path):
    info = probe(str(tmp_path / "nope.png"))
    assert info["ok"] is False
    assert "error" in info


def test_probe_not_an_image(tmp_path):
    path = tmp_path / "fake.png"
    path.write_bytes(b"definitely not a png")
    assert probe(str(path))["ok"] is False


def test_decode_file(sample_png_path):
    image = decode_image(sample_png_path)
    assert (image.width, image.height) == (64, 48)
    assert image.rgba.shape == (48, 64, 4)
    assert image.rgba.dtype == np.uint8


def test_decode_lifts_opaque_black(sample_png_path):
    image = decode_image(str(sample_png_path))
    # The black stripe at rows 10-11 survives as near-black
    assert (image.rgba[10:12, 4:, :3] == 1).all()
    assert (image.rgba[10:12, 4:, 3] == 255).all()


def test_decode_clears_transparent_pixels(sample_png_path):
    image = decode_image(str(sample_png_path))
    assert (image.rgba[:4, :4] == 0).all()


def test_decode_bytes_and_rgb_source():
    buf = io.BytesIO()
    Image.new("RGB", (5, 3), (200, 10, 10)).save(buf, format="JPEG")
    image = decode_image(buf.getvalue())
    assert (image.width, image.height) == (5, 3)
    assert (image.rgba[:, :, 3] == 255).all()


def test_decode_palette_gif_uses_first_frame():
    frames = [Image.new("P", (4, 4), i) for i in (1, 2)]
    for f in frames:
        f.putpalette([0, 0, 0, 255, 0, 0, 0, 255, 0] + [0] * (253 * 3))
    buf = io.BytesIO()
    frames[0].save(buf, format="GIF", save_all=True, append_images=frames[1:])
    image = decode_image(buf.getvalue())
    assert image.rgba[0, 0].tolist() == [255, 0, 0, 255]


def test_decode_garbage_raises():
    with pytest.raises(DecodeFailed):
        decode_image(b"\x00\x01garbage")


def test_decode_missing_file_raises(tmp_path):
    with pytest.raises(DecodeFailed):
        decode_image(tmp_path / "missing.png")


def test_lift_black_leaves_transparent_alone():
    frame = np.zeros((1, 2, 4), dtype=np.uint8)
    frame[0, 0, 3] = 255
    lift_black(frame)
    assert frame[0, 0].tolist() == [1, 1, 1, 255]
    assert frame[0, 1].tolist() == [0, 0, 0, 0]
