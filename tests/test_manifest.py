from pathlib import Path

from wms_log_analyzer.log_analyzer import analyze_log
from wms_log_analyzer.main import (
    LoadParams,
    build_manifest_dict,
    build_run_identity,
    get_default_params,
    utc_timestamp_seconds,
)

LOG_TEXT = (
    "2024-01-01 10:00:00,000 INFO  Sent data to: WMS_SNIMACLOG Elapsed time: 100 ms\n"
    "2024-01-01 10:00:10,000 INFO  Sent data to: WMS_SNIMACLOG Elapsed time: 300 ms\n"
    "2024-01-01 10:00:20,000 ] ERROR something\n"
)


def _build_test_result():
    """Analysis of a small three-line log."""
    return analyze_log(LOG_TEXT, file_name="app.log", file_size=len(LOG_TEXT))


def test_build_manifest_dict_summary_and_hashes():
    """Manifest carries the analysis summary, hashes and artifact names."""
    abs_input_posix = "/test/path/app.log"
    effective_params = {
        "load": {"log_path": "/test/path/app.log", "encoding": "utf-8", "verbose": False},
        "chart": {"width": 800, "height": 400},
        "plots": [{"kind": "ELAPSED_TIME"}, {"kind": "INTERVAL"}],
    }
    hashes = ("testhash", "fulltesthash")
    artifact_paths = [
        "/tmp/run/chart-testhash-00-elapsed_time.svg",
        "/tmp/run/report-testhash.txt",
    ]

    manifest = build_manifest_dict(
        abs_input_posix, _build_test_result(), effective_params, hashes, artifact_paths
    )

    assert manifest["version"] == "1"
    assert "timestamp_utc" in manifest
    assert manifest["absolute_input_path"] == abs_input_posix
    assert manifest["file_name"] == "app.log"
    assert manifest["file_size"] == len(LOG_TEXT)
    assert manifest["effective_parameters"] == effective_params
    assert manifest["short_hash"] == "testhash"
    assert manifest["full_hash"] == "fulltesthash"
    assert manifest["artifacts"] == [
        "chart-testhash-00-elapsed_time.svg",
        "report-testhash.txt",
    ]

    summary = manifest["summary"]
    assert summary["error_count"] == 1
    assert summary["sent_data_count"] == 2
    assert summary["average_elapsed_time"] == 200
    assert summary["average_interval"] == 10.0
    assert summary["max_elapsed_time"] == 300
    assert summary["max_elapsed_time_timestamp"] == "2024-01-01 10:00:10,000"
    assert summary["elapsed_time_points"] == 2
    assert summary["interval_points"] == 1


def test_run_identity_is_deterministic_and_parameter_sensitive(tmp_path: Path):
    _, chart, plots = get_default_params()
    load = LoadParams(log_path=tmp_path / "app.log")

    first = build_run_identity(load, chart, plots)
    second = build_run_identity(load, chart, plots)
    assert first == second

    abs_input_posix, short_hash, full_hash, effective = first
    assert abs_input_posix == (tmp_path / "app.log").resolve().as_posix()
    assert len(short_hash) == 8
    assert full_hash.startswith(short_hash)
    assert effective["load"]["log_path"] == abs_input_posix
    assert [p["kind"] for p in effective["plots"]] == ["ELAPSED_TIME", "INTERVAL"]

    other = build_run_identity(LoadParams(log_path=load.log_path, encoding="latin-1"), chart, plots)
    assert other[1] != short_hash


def test_manifest_timestamp_format():
    """Test that manifest timestamp is in correct format."""
    timestamp = utc_timestamp_seconds()
    # Should be ISO-8601 UTC timestamp with seconds precision and Z suffix
    assert timestamp.endswith("Z")
    assert "T" in timestamp
    # Should be parseable
    import datetime

    datetime.datetime.fromisoformat(timestamp[:-1])  # Remove Z for parsing
