import re
import threading

from epubclean.telemetry.progress import LogBuffer, ProgressChannel, ProgressEvent, fanout


def _evt(seq, message="m"):
    return ProgressEvent(seq=seq, job_id="job_1", stage="s", progress=0.0, message=message, ts=1.0)


def test_channel_delivers_in_order():
    got = []
    channel = ProgressChannel(got.append)
    channel.start()
    seqs = [channel.publish("job_1", "init", 0, f"msg {i}") for i in range(5)]
    channel.close()
    assert seqs == [1, 2, 3, 4, 5]
    assert [e.seq for e in got] == seqs
    assert [e.message for e in got] == [f"msg {i}" for i in range(5)]
    assert not channel.running


def test_full_queue_drops_without_blocking():
    entered = threading.Event()
    release = threading.Event()
    got = []

    def slow_sink(evt):
        entered.set()
        release.wait(5)
        got.append(evt.seq)

    channel = ProgressChannel(slow_sink, maxsize=1)
    channel.start()
    channel.publish("job_1", "s", 0, "first")
    assert entered.wait(5)
    channel.publish("job_1", "s", 0, "queued")
    channel.publish("job_1", "s", 0, "dropped")
    assert channel.dropped == 1
    release.set()
    channel.close()
    assert got == [1, 2]


def test_sink_errors_do_not_stop_the_consumer():
    got = []

    def sink(evt):
        if evt.seq == 1:
            raise ValueError("boom")
        got.append(evt.seq)

    channel = ProgressChannel(sink)
    channel.start()
    channel.publish("j", "s", 0, "a")
    channel.publish("j", "s", 0, "b")
    channel.close()
    assert got == [2]


def test_log_buffer_formats_and_trims():
    buf = LogBuffer(max_lines=5)
    for i in range(1, 7):
        buf(_evt(i, f"line {i}"))
    lines = buf.lines()
    assert len(lines) == 5
    assert lines[0].endswith("line 2")
    assert lines[-1].endswith("line 6")
    assert re.match(r"^\[\d{2}:\d{2}:\d{2}\.\d{3}\] line 2$", lines[0])


def test_log_buffer_counts_sequence_gaps():
    buf = LogBuffer()
    for seq in (1, 2, 5, 6, 9):
        buf(_evt(seq))
    assert buf.gaps == 4


def test_fanout_reaches_every_sink():
    a, b = [], []
    sink = fanout(a.append, b.append)
    sink(_evt(1))
    assert len(a) == len(b) == 1
