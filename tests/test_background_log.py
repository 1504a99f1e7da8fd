from __future__ import annotations

from comctl.core.background_log import BackgroundLog


def test_partial_lines_are_merged() -> None:
    log = BackgroundLog()
    log.append("Grbl 1.1h ")
    log.append("['$' for help]\r\n")
    log.append("<Idle|MPos:0.000,0.000,0.000>\n")

    assert log.lines() == ["Grbl 1.1h ['$' for help]", "<Idle|MPos:0.000,0.000,0.000>", ""]


def test_blank_lines_inside_chunk_are_dropped() -> None:
    log = BackgroundLog()
    log.append("first\n\n\nsecond")

    assert log.lines() == ["first", "second"]


def test_oldest_entries_are_evicted_past_capacity() -> None:
    log = BackgroundLog()
    for index in range(1000):
        log.append(f"line {index}\n")

    assert len(log) == 991
    assert log.lines()[0] == "line 10"
    assert log.lines()[-1] == ""
    assert "line 0" not in log


def test_large_chunk_never_leaves_log_above_capacity() -> None:
    log = BackgroundLog(capacity=20, evict_count=3)
    log.append("\n".join(f"row {i}" for i in range(50)))

    assert len(log) <= 20
    assert log.lines()[-1] == "row 49"
