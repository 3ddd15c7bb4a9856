import os
import zipfile

import pytest

from epubclean.errors import JobBusy
from epubclean.runtime import jobs
from epubclean.runtime.jobs import JobGate, default_output_path, run_sanitize_job
from epubclean.telemetry.progress import ProgressChannel


def test_gate_is_single_flight():
    gate = JobGate()
    assert gate.try_acquire("job_a")
    assert not gate.try_acquire("job_b")
    assert gate.running
    assert gate.current_job_id == "job_a"
    gate.release()
    assert not gate.running
    assert gate.current_job_id is None


def test_gate_hold_raises_when_busy():
    gate = JobGate()
    with gate.hold("job_a"):
        with pytest.raises(JobBusy) as err:
            with gate.hold("job_b"):
                pass
        assert err.value.running_job_id == "job_a"
    assert not gate.running


def test_default_output_path(tmp_path):
    assert default_output_path(tmp_path / "My Book.epub") == tmp_path / "My Book_sanitized.epub"


def test_job_end_to_end(make_epub, settings, monkeypatch):
    created = []
    real_mkdtemp = jobs.tempfile.mkdtemp

    def tracking_mkdtemp(*args, **kwargs):
        path = real_mkdtemp(*args, **kwargs)
        created.append(path)
        return path

    monkeypatch.setattr(jobs.tempfile, "mkdtemp", tracking_mkdtemp)

    src = make_epub()
    gate = JobGate()
    result = run_sanitize_job(src, gate=gate, settings=settings)

    assert result.ok, result.error
    assert result.stage == "complete"
    assert result.output_path == str(default_output_path(src))
    assert result.stats.total == 3
    assert result.stats.failed == 1
    assert result.any_failed
    assert not gate.running
    assert created and not os.path.exists(created[0])

    with zipfile.ZipFile(result.output_path) as z:
        names = z.namelist()
        assert names[0] == "mimetype"
        assert z.getinfo("mimetype").compress_type == zipfile.ZIP_STORED
        assert "OEBPS/images/bad.svg" in names
        assert "OEBPS/images/bad.png" not in names
        assert "OEBPS/text/ch1.xhtml" in names

    as_dict = result.to_dict()
    assert as_dict["stats"]["total"] == 3
    assert [r["path"] for r in as_dict["reports"]] == [
        "OEBPS/images/bad.png",
        "OEBPS/images/cover.png",
        "OEBPS/images/photo.jpg",
    ]


def test_job_reports_progress_stages(make_epub, settings):
    events = []
    channel = ProgressChannel(events.append)
    channel.start()
    result = run_sanitize_job(make_epub(), gate=JobGate(), settings=settings, channel=channel)
    channel.close()

    assert result.ok
    stages = []
    for evt in events:
        if not stages or stages[-1] != evt.stage:
            stages.append(evt.stage)
    assert stages == ["init", "workspace", "unpack", "sanitize", "repack", "complete"]
    assert events[0].progress == 0
    assert events[-1].progress == 100
    sanitize_pcts = [e.progress for e in events if e.stage == "sanitize"]
    assert min(sanitize_pcts) == 20 and max(sanitize_pcts) == 45
    assert all(e.job_id == result.job_id for e in events)
    assert [e.seq for e in events] == list(range(1, len(events) + 1))


def test_job_rejects_wrong_suffix(tmp_path, settings):
    src = tmp_path / "book.zip"
    src.write_bytes(b"PK")
    result = run_sanitize_job(src, gate=JobGate(), settings=settings)
    assert not result.ok
    assert result.stage == "error"
    assert result.error.startswith("init:")


def test_job_fails_on_corrupt_archive(tmp_path, settings):
    src = tmp_path / "broken.epub"
    src.write_bytes(b"garbage")
    gate = JobGate()
    result = run_sanitize_job(src, tmp_path / "out.epub", gate=gate, settings=settings)
    assert not result.ok
    assert result.error.startswith("unpack:")
    assert not (tmp_path / "out.epub").exists()
    assert not gate.running


def test_job_busy_when_gate_held(make_epub, settings):
    gate = JobGate()
    gate.try_acquire("job_other")
    with pytest.raises(JobBusy):
        run_sanitize_job(make_epub(), gate=gate, settings=settings)
    assert gate.current_job_id == "job_other"


def test_damaged_entry_fails_the_job(make_epub, book_entries, settings, damage_zip_entry):
    entries = book_entries(with_corrupt=False)
    entries["OEBPS/text/ch2.xhtml"] = b"<p>chapter two</p>" * 200
    src = make_epub(entries=entries)
    damage_zip_entry(src, "OEBPS/text/ch2.xhtml")

    gate = JobGate()
    result = run_sanitize_job(src, gate=gate, settings=settings)
    assert not result.ok
    assert result.stage == "error"
    assert result.error.startswith("unpack:")
    assert not gate.running
