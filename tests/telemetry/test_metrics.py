from prometheus_client import REGISTRY

from epubclean.telemetry import metrics


def _value(name, labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_action_kind_collapses_parameterized_tags():
    assert metrics.action_kind("FORCE_96DPI") == "FORCE_DPI"
    assert metrics.action_kind("FAST_300DPI") == "FAST_DPI"
    assert metrics.action_kind("RESIZE_3000x100→2500x83") == "RESIZE"
    assert metrics.action_kind("SPOOF_jpeg→png") == "SPOOF"
    assert metrics.action_kind("EXIF_ROT_90") == "EXIF_ROT_90"


def test_record_image_increments_counters():
    before = _value("epubclean_images_total", {"status": "REPLACED"})
    before_kind = _value("epubclean_image_actions_total", {"kind": "RESIZE"})
    metrics.record_image("REPLACED", ["RESIZE_10x10→5x5"], "full", 0.01)
    assert _value("epubclean_images_total", {"status": "REPLACED"}) == before + 1
    assert _value("epubclean_image_actions_total", {"kind": "RESIZE"}) == before_kind + 1


def test_job_and_zip_counters():
    before = _value("epubclean_jobs_total", {"outcome": "ok"})
    metrics.inc_job("ok")
    assert _value("epubclean_jobs_total", {"outcome": "ok"}) == before + 1

    before = _value("epubclean_zip_entries_skipped_total", {"reason": "traversal"})
    metrics.inc_zip_skipped("traversal")
    assert _value("epubclean_zip_entries_skipped_total", {"reason": "traversal"}) == before + 1
