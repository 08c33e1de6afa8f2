"""Gradio UI wrapper for the WMS log analyzer.

Upload one log file, get the summary report, both charts inline and a ZIP of all
artifacts. Each run writes into its own output_gradio/<timestamp> directory.
"""

import os
import shutil
from pathlib import Path
from typing import Optional, Tuple

# Backend selection is enforced centrally in main at import time.
try:
    from .log_reader import LogReadError
    from .main import (
        LoadParams,
        assemble_text_report,
        analyze_file,
        build_manifest_dict,
        build_run_identity,
        export_series_csv,
        get_default_params,
        render_plots,
    )
    from .utils import create_zip_async, ensure_run_dir, write_manifest, write_text_report
except ImportError:
    from log_reader import LogReadError  # type: ignore
    from main import (  # type: ignore
        LoadParams,
        assemble_text_report,
        analyze_file,
        build_manifest_dict,
        build_run_identity,
        export_series_csv,
        get_default_params,
        render_plots,
    )
    from utils import (  # type: ignore
        create_zip_async,
        ensure_run_dir,
        write_manifest,
        write_text_report,
    )

import logging
import time

import gradio as gr

logger = logging.getLogger(__name__)

RUN_ROOT_PREFIX = "output_gradio"
NO_FILE_MESSAGE = "Error: No log file uploaded. Please select a .log or .txt file."
READ_FAILURE_MESSAGE = (
    "Error: Failed to read the file. Please check file permissions and try again."
)
UNKNOWN_FAILURE_MESSAGE = "Error: An unknown error occurred during parsing."
ZIP_WAIT_SECONDS = 10.0


def _prune_old_runs(run_root: Path, keep: Optional[int] = None) -> None:
    """
    Retention helper: keep only the newest `keep` subdirectories under `run_root`.

    Timestamp-named run directories (YYYYmmddTHHMMSS) are ordered by name, anything
    else by mtime. Deletion failures are logged at WARNING; a later run retries them.
    """
    if keep is None:
        try:
            keep = int(os.getenv("WMS_LOG_RETENTION_KEEP", "10"))
        except ValueError:
            keep = 10
    if keep <= 0:
        logger.debug(f"retention keep <=0 ({keep}) -> skipping prune")
        return

    if not run_root.exists() or not run_root.is_dir():
        return

    subdirs = [p for p in run_root.iterdir() if p.is_dir()]
    if not subdirs:
        return

    def _looks_like_run_ts(name: str) -> bool:
        return (
            len(name) >= 15
            and name[0:8].isdigit()
            and name[8] == "T"
            and name[9:15].isdigit()
        )

    if all(_looks_like_run_ts(p.name) for p in subdirs):
        subdirs_sorted = sorted(subdirs, key=lambda p: p.name, reverse=True)
    else:
        subdirs_sorted = sorted(subdirs, key=lambda p: p.stat().st_mtime, reverse=True)

    run_root_resolved = run_root.resolve()
    for d in subdirs_sorted[keep:]:
        try:
            if d.is_symlink():
                logger.warning(f"Skipping symlink during prune: {d}")
                continue
            if os.path.commonpath([str(run_root_resolved), str(d.resolve())]) != str(
                run_root_resolved
            ):
                logger.warning(f"Skipping prune of {d} - resolved outside run_root")
                continue
            shutil.rmtree(d)
            logger.info(f"Pruned old run dir: {d}")
        except OSError as e:
            logger.warning(f"Failed to prune {d}: {e}")


def _resolve_upload_path(file_obj) -> Optional[str]:
    """gr.File hands back a path string, a dict or a tempfile wrapper depending on version."""
    if file_obj is None:
        return None
    if isinstance(file_obj, str):
        return file_obj
    if isinstance(file_obj, dict):
        return file_obj.get("name") or file_obj.get("tmp_path") or file_obj.get("path")
    return getattr(file_obj, "name", None)


def _charts_html(svg_paths) -> str:
    parts = []
    for svg_path in svg_paths:
        try:
            txt = Path(svg_path).read_text(encoding="utf-8")
        except OSError:
            txt = f"<!-- Failed to read {Path(svg_path).name} -->"
        parts.append(f"<div>{txt}</div>")
    if not parts:
        return "<p>Not enough data to display chart.</p>"
    return "\n".join(parts)


def _run_analysis(
    uploaded_file_path: Optional[str],
) -> Tuple[str, str, Optional[str]]:
    """
    Analyze one uploaded log. Returns (report_text, charts_html, zip_path).

    Acquisition failures and unexpected errors are reported as a flat message in
    the report slot; they never propagate to Gradio.
    """
    t0 = time.time()
    logger.info(f"_run_analysis START - uploaded_file_path={uploaded_file_path!r}")

    if not uploaded_file_path:
        return NO_FILE_MESSAGE, "", None

    _, chart_params, plot_params = get_default_params()
    load = LoadParams(log_path=Path(uploaded_file_path).resolve())

    try:
        result = analyze_file(load)
    except (FileNotFoundError, LogReadError) as e:
        logger.warning(f"Log acquisition failed: {e}")
        return READ_FAILURE_MESSAGE, "", None
    except Exception:
        logger.exception("Unexpected failure while analyzing uploaded log")
        return UNKNOWN_FAILURE_MESSAGE, "", None

    try:
        abs_input_posix, short_hash, full_hash, effective_params = build_run_identity(
            load, chart_params, plot_params
        )
        run_dir = ensure_run_dir(".", RUN_ROOT_PREFIX)

        svg_paths = render_plots(
            result, plot_params, chart_params, short_hash, output_dir=str(run_dir)
        )
        csv_paths = export_series_csv(result, run_dir, short_hash)
        report_text = assemble_text_report(result)
        report_path = write_text_report(report_text, run_dir, short_hash)

        artifacts = [Path(p) for p in svg_paths + csv_paths] + [report_path]
        manifest_path = run_dir / f"manifest-{short_hash}.json"
        write_manifest(
            manifest_path,
            build_manifest_dict(
                abs_input_posix,
                result,
                effective_params,
                (short_hash, full_hash),
                [str(p) for p in artifacts],
            ),
        )
        artifacts.append(manifest_path)

        _prune_old_runs(Path(RUN_ROOT_PREFIX))

        zip_path = run_dir / f"wms-log-{short_hash}.zip"
        thread = create_zip_async(str(zip_path), artifacts)
        thread.join(timeout=ZIP_WAIT_SECONDS)
        zip_out = str(zip_path) if zip_path.exists() else None
        if zip_out is None:
            logger.warning(f"ZIP not ready after {ZIP_WAIT_SECONDS}s: {zip_path}")

        html = _charts_html(svg_paths)
    except Exception:
        logger.exception("Unexpected failure while rendering analysis artifacts")
        return UNKNOWN_FAILURE_MESSAGE, "", None

    logger.info(f"_run_analysis COMPLETE (duration_ms={(time.time() - t0) * 1000:.1f})")
    return report_text, html, zip_out


def _reset():
    """Clear the upload and every output ('Analyze Another File')."""
    return None, "", "", None


def _build_ui():
    with gr.Blocks(title="WMS Log Analyzer") as demo:
        gr.Markdown(
            "### WMS Log Analyzer\n"
            'Upload a log file to count ERROR entries and "Sent data to: WMS_SNIMACLOG" '
            "messages and chart elapsed times and send intervals."
        )
        gr.HTML("""
<style>
  #report_box textarea {
    font-family: "SF Mono", "Menlo", "Monaco", "Consolas", "Liberation Mono", "Courier New", monospace;
    font-size: 13px;
    line-height: 1.3;
    resize: vertical;
    min-height: 200px;
  }
</style>
""")
        with gr.Row():
            file_input = gr.File(
                label="Select any .log or .txt file", file_types=[".log", ".txt"]
            )
        with gr.Row():
            run_button = gr.Button("Analyze", variant="primary")
            reset_button = gr.Button("Analyze Another File")
        report_box = gr.Textbox(
            value="", lines=16, interactive=False, elem_id="report_box", label="Report"
        )
        charts_html = gr.HTML(label="Charts")
        output_zip = gr.File(label="Download ZIP")

        def _click(file_obj):
            return _run_analysis(_resolve_upload_path(file_obj))

        # One analysis at a time; each finished run replaces the displayed result.
        run_button.click(
            _click,
            inputs=[file_input],
            outputs=[report_box, charts_html, output_zip],
            concurrency_limit=1,
        )
        reset_button.click(
            _reset,
            inputs=None,
            outputs=[file_input, report_box, charts_html, output_zip],
        )

    return demo


if __name__ == "__main__":
    demo = _build_ui()
    demo.launch()
