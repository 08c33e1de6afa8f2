#!/usr/bin/env python3
"""
WMS Log Analyzer - read a transfer log, aggregate it, chart it.

Pipeline stages, each a plain function over explicit inputs:
- analyze_file()       read + single-pass analysis -> AnalysisResult
- render_plots()       SVG charts of the elapsed-time and interval series
- assemble_text_report()
- build_manifest_dict()

_orchestrate() chains them for the CLI; the Gradio UI calls the same stages.
"""

import logging
import os
from dataclasses import dataclass
from enum import IntFlag
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

# Select a non-interactive backend before pyplot is imported anywhere so headless
# runs (CLI, Spaces, tests) never try to open a GUI window.
import matplotlib

matplotlib.use("Agg", force=True)
import matplotlib.dates as mdates
import matplotlib.pyplot as plt

# Support both package and script execution modes
try:
    # When run as a package: python -m wms_log_analyzer.main
    from .chart_geometry import Margin, Viewport, compute_chart_geometry
    from .log_analyzer import (
        AnalysisResult,
        TimestampedValue,
        analyze_log,
        parse_log_timestamp,
        round_half_up,
        series_to_frame,
    )
    from .log_reader import LogReadError, read_log_file
    from .utils import (
        build_effective_parameters,
        canonical_json_hash,
        normalize_abs_posix,
        sanitize_for_json,
        utc_timestamp_seconds,
        write_manifest,
        write_text_report,
    )
except ImportError:
    # When run directly: python wms_log_analyzer/main.py
    from chart_geometry import Margin, Viewport, compute_chart_geometry
    from log_analyzer import (
        AnalysisResult,
        TimestampedValue,
        analyze_log,
        parse_log_timestamp,
        round_half_up,
        series_to_frame,
    )
    from log_reader import LogReadError, read_log_file
    from utils import (
        build_effective_parameters,
        canonical_json_hash,
        normalize_abs_posix,
        sanitize_for_json,
        utc_timestamp_seconds,
        write_manifest,
        write_text_report,
    )

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

NOT_ENOUGH_DATA_MESSAGE: str = "Not enough data to display chart."
MANIFEST_VERSION: str = "1"


class ChartKind(IntFlag):
    ELAPSED_TIME = 1 << 0
    INTERVAL = 1 << 1

    # Presets
    NONE = 0
    ALL = ELAPSED_TIME | INTERVAL


@dataclass
class LoadParams:
    """
    Parameters used when reading the log.

    Attributes:
        log_path: Path to the log file.
        encoding: Text encoding; undecodable bytes are replaced.
        verbose: Log the analysis diagnostics summary.
    """

    log_path: Optional[Path]
    encoding: str = "utf-8"
    verbose: bool = False


@dataclass
class ChartParams:
    """Outer chart size and margins in pixels (SVG is rendered at 100 dpi)."""

    width: int = 800
    height: int = 400
    margin_top: int = 20
    margin_right: int = 20
    margin_bottom: int = 70
    margin_left: int = 60

    def viewport(self) -> Viewport:
        return Viewport(
            width=self.width,
            height=self.height,
            margin=Margin(
                top=self.margin_top,
                right=self.margin_right,
                bottom=self.margin_bottom,
                left=self.margin_left,
            ),
        )


@dataclass
class PlotParams:
    kind: ChartKind
    title: str
    y_label: str
    unit: str
    color: str


def get_default_params() -> Tuple[LoadParams, ChartParams, List[PlotParams]]:
    """
    Build default LoadParams, ChartParams and the canonical list of PlotParams
    (elapsed-time chart first, interval chart second).
    """
    load = LoadParams(log_path=None)
    chart = ChartParams()
    plots = [
        PlotParams(
            kind=ChartKind.ELAPSED_TIME,
            title="Elapsed Time Over Time",
            y_label="Elapsed Time (ms)",
            unit="ms",
            color="#06b6d4",
        ),
        PlotParams(
            kind=ChartKind.INTERVAL,
            title="Data Send Interval Over Time",
            y_label="Interval (s)",
            unit="s",
            color="#22c55e",
        ),
    ]
    return load, chart, plots


def series_for(
    result: AnalysisResult, kind: ChartKind
) -> Tuple[TimestampedValue, ...]:
    if kind == ChartKind.ELAPSED_TIME:
        return result.elapsed_time_data
    if kind == ChartKind.INTERVAL:
        return result.interval_data
    raise ValueError(f"Chart kind must be a single series, got {kind!r}")


def is_chartable(series: Sequence[TimestampedValue]) -> bool:
    """A series can be charted with two or more points spanning a non-zero time range."""
    return len(series) >= 2 and series[0].timestamp != series[-1].timestamp


# -------------------------
# Display formatting
# -------------------------
def format_bytes(num_bytes: int, decimals: int = 2) -> str:
    """Human-readable 1024-based size, e.g. 1536 -> '1.5 KB'."""
    if num_bytes == 0:
        return "0 Bytes"
    k = 1024
    decimals = max(decimals, 0)
    sizes = ["Bytes", "KB", "MB", "GB", "TB"]
    i = 0
    while i < len(sizes) - 1 and num_bytes >= k ** (i + 1):
        i += 1
    scaled = round_half_up(num_bytes / k**i, decimals)
    text = f"{scaled:.{decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text} {sizes[i]}"


def format_log_timestamp(value) -> str:
    """
    Render a raw 'YYYY-MM-DD HH:MM:SS,fff' string or a datetime as 'DD.MM.YYYY HH:MM:SS'.
    None/empty -> 'N/A'; unparseable strings -> 'Invalid Date'.
    """
    if value is None or value == "":
        return "N/A"
    ts = parse_log_timestamp(value) if isinstance(value, str) else value
    if ts is None:
        return "Invalid Date"
    return ts.strftime("%d.%m.%Y %H:%M:%S")


def format_axis_time(ts) -> str:
    return ts.strftime("%H:%M:%S")


# -------------------------
# Rendering
# -------------------------
def render_chart(
    series: Sequence[TimestampedValue],
    plot_params: PlotParams,
    chart_params: ChartParams,
    output_svg: Union[str, Path],
) -> Optional[str]:
    """
    Render one series as a line + filled-area SVG. Returns the output path, or None
    when the series is not chartable (nothing is written): fewer than two points, or
    first and last points at the same instant.

    Figure size, plotting-area margins and both tick sets come from the series'
    ChartGeometry, so the SVG matches the geometry used for hover lookups.
    """
    if not is_chartable(series):
        logger.info(f"{plot_params.title}: {NOT_ENOUGH_DATA_MESSAGE}")
        return None

    vp = chart_params.viewport()
    geometry = compute_chart_geometry(series, vp)
    frame = series_to_frame(geometry.series)
    x = mdates.date2num(frame["timestamp"])
    y = frame["value"].to_numpy(dtype=float)

    plt.style.use("dark_background")
    fig = plt.figure(figsize=(vp.width / 100.0, vp.height / 100.0), dpi=100)
    m = vp.margin
    fig.subplots_adjust(
        left=m.left / vp.width,
        right=1.0 - m.right / vp.width,
        top=1.0 - m.top / vp.height,
        bottom=m.bottom / vp.height,
    )
    ax = fig.add_subplot(1, 1, 1)

    ax.fill_between(x, y, 0.0, color=plot_params.color, alpha=0.25, linewidth=0)
    ax.plot(x, y, color=plot_params.color, linewidth=2.0)

    ax.set_xlim(x[0], x[-1])
    ax.set_ylim(0.0, geometry.y_max if geometry.y_max > 0 else 1.0)

    ax.set_yticks([t.value for t in geometry.y_ticks])
    ax.grid(axis="y", color="#475569", linestyle=(0, (2, 3)), linewidth=0.8)
    ax.set_xticks(mdates.date2num([t.value for t in geometry.x_ticks]))
    ax.set_xticklabels([format_axis_time(t.value) for t in geometry.x_ticks])

    ax.set_ylabel(plot_params.y_label)
    ax.set_xlabel("Time")
    ax.set_title(plot_params.title)

    fig.savefig(str(output_svg), format="svg")
    plt.close(fig)
    return str(output_svg)


def render_plots(
    result: AnalysisResult,
    list_plot_params: List[PlotParams],
    chart_params: ChartParams,
    short_hash: str,
    output_dir: Optional[str] = None,
) -> List[str]:
    """
    Render every requested chart. Returns the paths that were written; series that are
    not chartable are skipped.

    Filenames: chart-{short_hash}-{ii}-{kind}.svg with a zero-based, zero-padded index.
    """
    artifact_paths: List[str] = []
    for idx, pp in enumerate(list_plot_params):
        suffix = (pp.kind.name or "chart").lower()
        filename = f"chart-{short_hash}-{idx:02}-{suffix}.svg"
        output_path = Path(output_dir) / filename if output_dir else Path(filename)
        written = render_chart(
            series_for(result, pp.kind), pp, chart_params, output_path
        )
        if written is not None:
            artifact_paths.append(written)
    return artifact_paths


def export_series_csv(
    result: AnalysisResult, output_dir: Union[str, Path], short_hash: str
) -> List[str]:
    """Write both series as 'timestamp,value' CSV files. Returns the written paths."""
    paths: List[str] = []
    for kind in (ChartKind.ELAPSED_TIME, ChartKind.INTERVAL):
        target = Path(output_dir) / f"{kind.name.lower()}-{short_hash}.csv"
        series_to_frame(series_for(result, kind)).to_csv(target, index=False)
        paths.append(str(target))
    return paths


# -------------------------
# Report & manifest
# -------------------------
def assemble_text_report(result: AnalysisResult) -> str:
    """Plain-text summary of one analysis, in the fixed display formats."""
    parts: list[str] = []
    parts.append(f"Log file: {result.file_name} ({format_bytes(result.file_size)})")
    if result.first_log_timestamp and result.last_log_timestamp:
        parts.append(
            f"Log period: {format_log_timestamp(result.first_log_timestamp)}"
            f" -> {format_log_timestamp(result.last_log_timestamp)}"
        )
    parts.append("")
    parts.append(f"Total ERROR records:        {result.error_count}")
    parts.append(f"'Sent data to: ...':        {result.sent_data_count}")
    parts.append(f"Avg. Elapsed Time:          {result.average_elapsed_time} ms")
    parts.append(
        f"Avg. Interval:              {round_half_up(result.average_interval, 2):.2f} s"
    )
    parts.append(
        f"Peak Elapsed Time:          {result.max_elapsed_time} ms"
        f" ({format_log_timestamp(result.max_elapsed_time_timestamp)})"
    )
    parts.append("")

    _, _, plots = get_default_params()
    for pp in plots:
        series = series_for(result, pp.kind)
        line = f"{pp.title}: {len(series)} point(s)"
        if not is_chartable(series):
            line += f" - {NOT_ENOUGH_DATA_MESSAGE}"
        parts.append(line)

    diag = result.diagnostics
    if diag is not None and diag.suppressed_interval is not None:
        parts.append(
            f"Interval outlier suppressed: {diag.suppressed_interval.value} s at "
            f"{format_log_timestamp(diag.suppressed_interval.timestamp)}"
        )
    if diag is not None and diag.unparseable_sent_timestamps:
        parts.append(
            f"Data-sent lines with unparseable timestamps: "
            f"{diag.unparseable_sent_timestamps}"
        )
    return "\n".join(parts)


def build_run_identity(
    load: LoadParams, chart: ChartParams, plots: List[PlotParams]
) -> tuple[str, str, str, dict]:
    """
    Returns (abs_input_posix, short_hash, full_hash, effective_params)
    """
    abs_input_posix = normalize_abs_posix(load.log_path)
    effective_params = build_effective_parameters(load, chart, plots)
    canonical_payload = {
        "absolute_input_path": abs_input_posix,
        "effective_parameters": effective_params,
    }
    short_hash, full_hash = canonical_json_hash(canonical_payload)
    return abs_input_posix, short_hash, full_hash, effective_params


def build_manifest_dict(
    abs_input_posix: str,
    result: AnalysisResult,
    effective_params: dict,
    hashes: tuple[str, str],
    artifact_paths: List[str],
) -> dict:
    short_hash, full_hash = hashes
    return {
        "version": MANIFEST_VERSION,
        "timestamp_utc": utc_timestamp_seconds(),
        "absolute_input_path": abs_input_posix,
        "file_name": result.file_name,
        "file_size": result.file_size,
        "summary": {
            "error_count": result.error_count,
            "sent_data_count": result.sent_data_count,
            "average_elapsed_time": result.average_elapsed_time,
            "average_interval": result.average_interval,
            "max_elapsed_time": result.max_elapsed_time,
            "max_elapsed_time_timestamp": result.max_elapsed_time_timestamp,
            "first_log_timestamp": result.first_log_timestamp,
            "last_log_timestamp": result.last_log_timestamp,
            "elapsed_time_points": len(result.elapsed_time_data),
            "interval_points": len(result.interval_data),
        },
        "effective_parameters": effective_params,
        "short_hash": short_hash,
        "full_hash": full_hash,
        "artifacts": [Path(p).name for p in artifact_paths],
    }


def analyze_file(params: LoadParams) -> AnalysisResult:
    """Read the log named by params.log_path and analyze it."""
    if params.log_path is None:
        raise ValueError("A log path is required")
    loaded = read_log_file(params.log_path, encoding=params.encoding)
    return analyze_log(
        loaded.text,
        file_name=loaded.file_name,
        file_size=loaded.file_size,
        verbose=params.verbose,
    )


def _orchestrate(
    params_load: LoadParams,
    params_chart: ChartParams,
    list_plot_params: List[PlotParams],
    output_root: Union[str, Path] = "output",
    export_csv: bool = True,
) -> Path:
    """
    Run the full pipeline and write all artifacts into a fresh per-run directory.
    Prints the report and returns the run directory.
    """
    from datetime import datetime

    abs_input_posix, short_hash, full_hash, effective_params = build_run_identity(
        params_load, params_chart, list_plot_params
    )
    result = analyze_file(params_load)

    run_output_dir = Path(output_root) / datetime.now().strftime("%Y%m%dT%H%M%S")
    run_output_dir.mkdir(parents=True, exist_ok=True)

    artifact_paths = render_plots(
        result,
        list_plot_params,
        params_chart,
        short_hash,
        output_dir=str(run_output_dir),
    )
    if export_csv:
        artifact_paths.extend(export_series_csv(result, run_output_dir, short_hash))

    report = assemble_text_report(result)
    report_path = write_text_report(report, run_output_dir, short_hash)
    artifact_paths.append(str(report_path))

    manifest = build_manifest_dict(
        abs_input_posix=abs_input_posix,
        result=result,
        effective_params=effective_params,
        hashes=(short_hash, full_hash),
        artifact_paths=artifact_paths,
    )
    write_manifest(run_output_dir / f"manifest-{short_hash}.json", manifest)

    print(report)
    return run_output_dir


# -------------------------
# CLI
# -------------------------
def _parse_chart_kinds(spec: str) -> ChartKind:
    """
    Parse a chart selection: 'all', 'none', or a comma/'+'-joined list of
    'elapsed' / 'interval' (case-insensitive).
    """
    aliases = {
        "elapsed": ChartKind.ELAPSED_TIME,
        "elapsed_time": ChartKind.ELAPSED_TIME,
        "interval": ChartKind.INTERVAL,
        "all": ChartKind.ALL,
        "none": ChartKind.NONE,
    }
    flags = ChartKind.NONE
    for token in spec.replace("+", ",").split(","):
        token = token.strip().lower()
        if not token:
            continue
        if token not in aliases:
            raise ValueError(f"Unknown chart selection: {token}")
        flags |= aliases[token]
    return flags


def _build_cli_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="wms-log-analyzer",
        description="Analyze a WMS transfer log (errors, data-sent events, elapsed times, intervals).",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    d_load, d_chart, _ = get_default_params()

    parser.add_argument(
        "--log-path",
        required=True,
        help="Path to the log file to analyze.",
    )
    parser.add_argument(
        "--output-dir",
        default="output",
        help="Directory that receives one timestamped sub-directory per run.",
    )
    parser.add_argument(
        "--encoding",
        default=d_load.encoding,
        help="Text encoding of the log file (undecodable bytes are replaced).",
    )
    parser.add_argument(
        "--charts",
        default="all",
        help="Charts to render: all, none, elapsed, interval (comma-separated).",
    )
    parser.add_argument("--width", type=int, default=d_chart.width, help="Chart width in px.")
    parser.add_argument("--height", type=int, default=d_chart.height, help="Chart height in px.")
    parser.add_argument(
        "--no-csv",
        action="store_true",
        help="Do not export the elapsed-time and interval series as CSV.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log analysis diagnostics.",
    )
    parser.add_argument(
        "--print-defaults",
        action="store_true",
        help="Print default parameter values and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Show full tracebacks for debugging (also WMS_LOG_ANALYZER_DEBUG=1).",
    )
    return parser


def _args_to_params(args) -> Tuple[LoadParams, ChartParams, List[PlotParams]]:
    """
    Merge CLI args over defaults to build parameter objects.
    """
    d_load, d_chart, d_plots = get_default_params()

    load = LoadParams(
        log_path=Path(args.log_path).resolve()
        if getattr(args, "log_path", None)
        else d_load.log_path,
        encoding=getattr(args, "encoding", None) or d_load.encoding,
        verbose=bool(getattr(args, "verbose", False)),
    )

    width = getattr(args, "width", None) or d_chart.width
    height = getattr(args, "height", None) or d_chart.height
    chart = ChartParams(
        width=width,
        height=height,
        margin_top=d_chart.margin_top,
        margin_right=d_chart.margin_right,
        margin_bottom=d_chart.margin_bottom,
        margin_left=d_chart.margin_left,
    )
    vp = chart.viewport()
    if vp.inner_width <= 0 or vp.inner_height <= 0:
        raise ValueError(
            f"Chart size {width}x{height} leaves no plotting area inside the margins"
        )

    flags = _parse_chart_kinds(getattr(args, "charts", None) or "all")
    plots = [pp for pp in d_plots if pp.kind & flags]
    return load, chart, plots


def main(argv: Optional[List[str]] = None) -> None:
    """
    CLI entry point. Parses arguments, builds parameter objects, then orchestrates.
    """
    import sys

    argv = sys.argv[1:] if argv is None else argv

    if "--print-defaults" in argv:
        import json

        d_load, d_chart, d_plots = get_default_params()
        payload = {
            "LoadParams": sanitize_for_json(d_load),
            "ChartParams": sanitize_for_json(d_chart),
            "PlotParams": [sanitize_for_json(pp) for pp in d_plots],
        }
        print(json.dumps(payload, indent=2))
        return

    parser = _build_cli_parser()
    args = parser.parse_args(argv)
    debug_mode = bool(
        getattr(args, "debug", False) or os.getenv("WMS_LOG_ANALYZER_DEBUG", "") == "1"
    )
    if debug_mode:
        logger.setLevel(logging.DEBUG)

    try:
        params_load, params_chart, plot_params_list = _args_to_params(args)
        _orchestrate(
            params_load,
            params_chart,
            plot_params_list,
            output_root=args.output_dir,
            export_csv=not args.no_csv,
        )
    except (FileNotFoundError, LogReadError, ValueError) as e:
        # Concise, user-facing errors for user-correctable problems.
        logger.info("User-facing error: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        logger.exception("Unhandled exception during execution")
        if debug_mode:
            import traceback

            traceback.print_exc()
        else:
            print(f"Unexpected error: {e}", file=sys.stderr)
            print(
                "Run with --debug or set WMS_LOG_ANALYZER_DEBUG=1 to see the full traceback.",
                file=sys.stderr,
            )
        sys.exit(1)


if __name__ == "__main__":
    main()
