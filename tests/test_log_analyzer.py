from datetime import datetime, timedelta
from functools import reduce

from wms_log_analyzer.log_analyzer import (
    AnalysisResult,
    _Accumulator,
    analyze_log,
    fold_line,
)
from wms_log_analyzer.log_reader import read_log_file

SENT = "INFO  Sent data to: WMS_SNIMACLOG"
BASE = datetime(2024, 1, 1, 10, 0, 0)


def ts_at(seconds: float) -> str:
    """Raw 'YYYY-MM-DD HH:MM:SS,fff' prefix `seconds` after BASE."""
    t = BASE + timedelta(seconds=seconds)
    return t.strftime("%Y-%m-%d %H:%M:%S,") + f"{t.microsecond // 1000:03d}"


def sent_line(prefix: str, elapsed=None) -> str:
    line = f"{prefix} [worker-1] {SENT} payload=42"
    if elapsed is not None:
        line += f" Elapsed time: {elapsed} ms"
    return line


def sent_log(offsets, elapsed=None) -> str:
    return "\n".join(sent_line(ts_at(s), elapsed) for s in offsets) + "\n"


def test_reference_scenario():
    text = (
        "2024-01-01 10:00:00,000 INFO  Sent data to: WMS_SNIMACLOG Elapsed time: 100 ms\n"
        "2024-01-01 10:00:10,000 INFO  Sent data to: WMS_SNIMACLOG Elapsed time: 300 ms\n"
        "2024-01-01 10:00:20,000 ] ERROR something\n"
    )
    r = analyze_log(text, file_name="app.log", file_size=len(text))

    assert isinstance(r, AnalysisResult)
    assert r.file_name == "app.log"
    assert r.file_size == len(text)
    assert r.error_count == 1
    assert r.sent_data_count == 2
    assert r.average_elapsed_time == 200
    assert r.max_elapsed_time == 300
    assert r.max_elapsed_time_timestamp == "2024-01-01 10:00:10,000"
    assert r.average_interval == 10.0
    assert len(r.elapsed_time_data) == 2
    assert [p.value for p in r.elapsed_time_data] == [100, 300]
    assert len(r.interval_data) == 1
    assert r.interval_data[0].value == 10.0
    assert r.interval_data[0].timestamp == datetime(2024, 1, 1, 10, 0, 10)
    assert r.first_log_timestamp == "2024-01-01 10:00:00,000"
    assert r.last_log_timestamp == "2024-01-01 10:00:20,000"


def test_error_and_sent_counts_are_independent():
    lines = [
        f"{ts_at(0)} [main] ERROR connection refused",
        f"{ts_at(1)} [main] ERROR retry failed; {SENT}",
        sent_line(ts_at(2), 40),
        "ERROR without bracket is not counted",
        f"{ts_at(3)} INFO Sent data to: WMS_SNIMACLOG single space is not counted",
        f"trailing context ] ERROR {SENT}",
        "",
    ]
    r = analyze_log("\n".join(lines))

    assert r.error_count == sum("] ERROR" in ln for ln in lines) == 3
    assert r.sent_data_count == sum(SENT in ln for ln in lines) == 3


def test_no_elapsed_markers_leaves_elapsed_stats_empty():
    r = analyze_log(sent_log([0, 5, 10]))

    assert r.sent_data_count == 3
    assert r.average_elapsed_time == 0
    assert r.max_elapsed_time == 0
    assert r.max_elapsed_time_timestamp is None
    assert r.elapsed_time_data == ()


def test_zero_elapsed_time_is_a_real_maximum():
    r = analyze_log(sent_line(ts_at(0), 0))

    assert r.max_elapsed_time == 0
    assert r.max_elapsed_time_timestamp == ts_at(0)
    assert r.average_elapsed_time == 0
    assert len(r.elapsed_time_data) == 1


def test_fewer_than_two_instants_gives_no_intervals():
    single = analyze_log(sent_log([0], elapsed=10))
    assert single.average_interval == 0
    assert single.interval_data == ()

    empty = analyze_log("")
    assert empty.sent_data_count == 0
    assert empty.average_interval == 0
    assert empty.interval_data == ()
    assert empty.first_log_timestamp is None
    assert empty.last_log_timestamp is None


def test_interval_count_without_and_with_outlier_removal():
    # 3 instants -> 2 intervals, below the removal threshold
    r2 = analyze_log(sent_log([0, 10, 40]))
    assert [p.value for p in r2.interval_data] == [10.0, 30.0]

    # 5 instants -> 4 intervals -> largest removed
    r4 = analyze_log(sent_log([0, 10, 40, 50, 60]))
    assert len(r4.interval_data) == 3
    assert [p.value for p in r4.interval_data] == [10.0, 10.0, 10.0]
    assert r4.diagnostics.suppressed_interval.value == 30.0


def test_outlier_removal_does_not_change_average_interval():
    r = analyze_log(sent_log([0, 10, 40, 50, 60]))
    # mean over all four deltas (10, 30, 10, 10), computed before suppression
    assert r.average_interval == 15.0


def test_outlier_removal_drops_only_first_of_tied_maxima():
    # deltas: 5, 20, 20, 5
    r = analyze_log(sent_log([0, 5, 25, 45, 50]))

    assert [p.value for p in r.interval_data] == [5.0, 20.0, 5.0]
    kept_stamps = [p.timestamp for p in r.interval_data]
    assert BASE + timedelta(seconds=25) not in kept_stamps
    assert BASE + timedelta(seconds=45) in kept_stamps


def test_first_and_last_timestamps_ignore_line_content():
    lines = [
        "startup banner without timestamp",
        "2024-01-01 09:00:00,000 DEBUG boot",
        "  2024-01-01 09:30:00,000 indented, not at start of line",
        sent_line("2024-01-01 10:00:00,000", 5),
        "2024-01-01 11:00:00,000 WARN shutting down",
        "2024-01-01 12:00:00 missing milliseconds",
        "shutdown banner",
    ]
    r = analyze_log("\n".join(lines))

    assert r.first_log_timestamp == "2024-01-01 09:00:00,000"
    assert r.last_log_timestamp == "2024-01-01 11:00:00,000"


def test_unparseable_sent_timestamp_counts_but_stays_out_of_series():
    lines = [
        sent_line(ts_at(0), 100),
        sent_line("0000-00-00 00:00:00,000", 900),
        sent_line("garbage-garbage-garbage", 50),
        sent_line(ts_at(10), 200),
    ]
    r = analyze_log("\n".join(lines))

    assert r.sent_data_count == 4
    assert [p.value for p in r.elapsed_time_data] == [100, 200]
    # the two valid instants form exactly one interval
    assert len(r.interval_data) == 1
    assert r.interval_data[0].value == 10.0
    assert r.average_interval == 10.0
    # elapsed-time statistics still see every marker
    # 312.5 rounds half up
    assert r.average_elapsed_time == 313
    assert r.max_elapsed_time == 900
    assert r.max_elapsed_time_timestamp == "0000-00-00 00:00:00,000"
    assert r.diagnostics.unparseable_sent_timestamps == 2


def test_invalid_calendar_date_is_unparseable():
    r = analyze_log(
        "\n".join(
            [
                sent_line("2024-02-30 10:00:00,000", 10),
                sent_line("2024-13-01 10:00:00,000", 10),
            ]
        )
    )
    assert r.sent_data_count == 2
    assert r.elapsed_time_data == ()
    # the prefixes still match the timestamp grammar
    assert r.first_log_timestamp == "2024-02-30 10:00:00,000"


def test_average_elapsed_time_rounds_halves_up():
    r = analyze_log(
        "\n".join([sent_line(ts_at(0), 100), sent_line(ts_at(1), 101)])
    )
    assert r.average_elapsed_time == 101


def test_max_elapsed_time_keeps_first_line_on_ties():
    r = analyze_log(
        "\n".join(
            [
                sent_line(ts_at(0), 300),
                sent_line(ts_at(1), 300),
                sent_line(ts_at(2), 100),
            ]
        )
    )
    assert r.max_elapsed_time == 300
    assert r.max_elapsed_time_timestamp == ts_at(0)


def test_elapsed_marker_outside_sent_lines_is_ignored():
    r = analyze_log(f"{ts_at(0)} DEBUG probe Elapsed time: 999 ms\n")
    assert r.max_elapsed_time == 0
    assert r.elapsed_time_data == ()


def test_crlf_input_matches_lf_input(tmp_path):
    lf = sent_log([0, 10, 25, 30], elapsed=120) + f"{ts_at(40)} [x] ERROR boom\n"
    crlf = lf.replace("\n", "\r\n")

    assert analyze_log(crlf) == analyze_log(lf)

    p = tmp_path / "crlf.log"
    p.write_bytes(crlf.encode("utf-8"))
    loaded = read_log_file(p)
    assert loaded.text == crlf
    assert analyze_log(loaded.text) == analyze_log(lf)


def test_bare_carriage_returns_are_not_line_breaks(tmp_path):
    text = "2024-01-01 10:00:00,000 ] ERROR a\r2024-01-01 10:00:01,000 ] ERROR b\r"
    p = tmp_path / "cr.log"
    p.write_bytes(text.encode("utf-8"))

    from_file = analyze_log(read_log_file(p).text)

    assert from_file == analyze_log(text)
    assert from_file.error_count == 1
    assert from_file.last_log_timestamp == "2024-01-01 10:00:00,000"


def test_interval_values_keep_millisecond_precision():
    r = analyze_log(sent_log([0, 1.125, 2.5]))
    # 1.125 s rounds half up to 1.13
    assert [p.value for p in r.interval_data] == [1.13, 1.38]
    assert r.average_interval == 1.25


def test_series_are_in_source_order():
    r = analyze_log(sent_log([0, 3, 7, 12, 20, 21], elapsed=10))
    stamps = [p.timestamp for p in r.elapsed_time_data]
    assert stamps == sorted(stamps)
    interval_stamps = [p.timestamp for p in r.interval_data]
    assert interval_stamps == sorted(interval_stamps)


def test_fold_over_fixed_lines_builds_expected_accumulator():
    lines = [
        sent_line(ts_at(0), 10),
        f"{ts_at(1)} [main] ERROR x",
        sent_line(ts_at(2), 30),
    ]
    acc = reduce(fold_line, lines, _Accumulator())

    assert acc.total_lines == 3
    assert acc.error_count == 1
    assert acc.sent_data_count == 2
    assert acc.total_elapsed_time == 40
    assert acc.elapsed_time_count == 2
    assert acc.max_elapsed_time == 30
    assert len(acc.sent_data_instants) == 2
    assert acc.first_log_timestamp == ts_at(0)
    assert acc.last_log_timestamp == ts_at(2)
