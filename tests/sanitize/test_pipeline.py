from PIL import Image

from epubclean.config import Settings
from epubclean.images.dpi import read_jfif_density, read_png_phys
from epubclean.images.placeholder import PLACEHOLDER_BYTES, is_placeholder
from epubclean.models import ReportStatus
from epubclean.sanitize.pipeline import sanitize_file


def test_png_end_to_end(make_image):
    p = make_image("cover.png", size=(100, 100))
    report = sanitize_file(p, Settings(), label="cover.png")

    assert report.path == "cover.png"
    assert report.original_format == "png"
    assert "FORCE_96DPI" in report.actions
    assert report.actions[-1] == "CLEAN_BINARY"
    assert report.status in (ReportStatus.OK, ReportStatus.REPAIRED)
    assert report.error is None
    assert report.size_after == p.stat().st_size
    assert read_png_phys(p.read_bytes()) == (3780, 3780, 1)


def test_clean_rgba_png_is_ok(make_image):
    p = make_image("clean.png", mode="RGBA", color=(5, 6, 7, 255))
    report = sanitize_file(p, Settings())
    assert report.status is ReportStatus.OK
    assert report.actions == ("EXIF_STRIPPED", "FORCE_96DPI", "CLEAN_BINARY")


def test_rgb_png_is_repaired(make_image):
    report = sanitize_file(make_image("rgb.png"), Settings())
    assert report.status is ReportStatus.REPAIRED
    assert "FORCE_sRGB" in report.actions


def test_plain_jpeg_takes_fast_path(make_image):
    p = make_image("photo.jpg", fmt="JPEG", size=(60, 40))
    report = sanitize_file(p, Settings())
    assert report.actions == ("FAST_96DPI",)
    assert report.status is ReportStatus.OK
    assert read_jfif_density(p.read_bytes()) == (1, 96, 96)


def test_rotated_jpeg_takes_full_path(make_image):
    p = make_image("rot.jpg", fmt="JPEG", size=(40, 20), orientation=6)
    report = sanitize_file(p, Settings())
    assert "EXIF_ROT_270" in report.actions
    assert "FORCE_96DPI" in report.actions
    assert report.status is ReportStatus.REPAIRED


def test_spoofed_extension_is_recorded_and_reencoded(make_image):
    p = make_image("fake.jpg", fmt="PNG")
    report = sanitize_file(p, Settings())
    assert report.original_format == "png"
    assert report.actions[0] == "SPOOF_jpeg→png"
    assert report.status is ReportStatus.REPAIRED
    assert p.read_bytes()[:2] == b"\xFF\xD8"


def test_transparent_png_is_flattened(make_image):
    p = make_image("alpha.png", mode="RGBA", color=(0, 0, 0, 0))
    report = sanitize_file(p, Settings())
    assert "ALPHA_FLAT_WHITE" in report.actions
    assert report.status is ReportStatus.REPAIRED


def test_large_image_is_downsampled(make_image):
    p = make_image("wide.png", size=(300, 60))
    report = sanitize_file(p, Settings(MAX_IMAGE_LONG_SIDE=150))
    assert "RESIZE_300x60→150x30" in report.actions


def test_unknown_format_is_replaced_and_failed(tmp_path):
    p = tmp_path / "broken.png"
    p.write_bytes(b"definitely not an image")
    report = sanitize_file(p, Settings())

    assert report.status is ReportStatus.FAILED
    assert report.actions == ("INVALID_REPLACED",)
    assert report.error
    assert report.size_before == len(b"definitely not an image")
    assert report.size_after == len(PLACEHOLDER_BYTES)
    assert not p.exists()
    assert is_placeholder(tmp_path / "broken.svg")


def test_decode_failure_is_replaced(tmp_path, make_noisy_png):
    data = make_noisy_png()
    p = tmp_path / "cut.png"
    p.write_bytes(data[: len(data) // 2])
    report = sanitize_file(p, Settings())

    assert report.status is ReportStatus.REPLACED
    assert report.actions[-1] == "DECODE_FAIL_REPLACED"
    assert report.original_format == "png"
    assert is_placeholder(tmp_path / "cut.svg")


def test_bounds_violation_is_replaced(make_image):
    p = make_image("huge.png", size=(40, 40))
    report = sanitize_file(p, Settings(MAX_IMAGE_DIMENSION=10))
    assert report.status is ReportStatus.REPLACED
    assert report.actions == ("DECODE_FAIL_REPLACED",)


def test_reencode_failure_is_failed(make_image, monkeypatch):
    from epubclean.errors import ReencodeError
    from epubclean.sanitize import pipeline

    def boom(path, img, settings):
        raise ReencodeError("encode failed: boom")

    monkeypatch.setattr(pipeline, "reencode", boom)
    p = make_image("x.png")
    report = sanitize_file(p, Settings())
    assert report.status is ReportStatus.FAILED
    assert report.actions[-1] == "REENCODE_FAILED"
    assert "FORCE_96DPI" not in report.actions
    assert not p.exists()


def test_16bit_grayscale_png_keeps_its_tone(make_image):
    p = make_image("gray16.png", size=(20, 20), mode="I;16", color=30000)
    report = sanitize_file(p, Settings())
    assert "FORCE_sRGB" in report.actions
    with Image.open(p) as out:
        r, g, b = out.convert("RGB").getpixel((10, 10))
    assert r == g == b
    assert 116 <= r <= 118
