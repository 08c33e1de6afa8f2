from __future__ import annotations

import dataclasses
import datetime as _dt
import enum
import hashlib
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable

logger = logging.getLogger(__name__)


# -------------------------
# Path utilities
# -------------------------
def normalize_abs_posix(path: str | Path) -> str:
    """
    Return an absolute POSIX-style path string for the given input.
    Ensures deterministic representation across platforms.
    """
    return Path(path).resolve().as_posix()


# -------------------------
# Hashing utilities
# -------------------------
def canonical_json_dumps(payload: dict[str, Any]) -> str:
    """
    Deterministic JSON string for hashing:
    - separators=(',', ':')
    - sort_keys=True
    - ensure_ascii=False
    """
    return json.dumps(
        payload, ensure_ascii=False, separators=(",", ":"), sort_keys=True
    )


def canonical_json_hash(payload: dict[str, Any]) -> tuple[str, str]:
    """
    Return (short_hash8, full_hash_hex) computed over canonical JSON bytes (UTF-8).
    """
    digest = hashlib.sha256(canonical_json_dumps(payload).encode("utf-8")).hexdigest()
    return digest[:8], digest


# -------------------------
# Manifest helpers
# -------------------------
def sanitize_for_json(obj: Any) -> Any:
    """
    Recursively convert parameter objects and analysis values into JSON primitives.

    Conversions performed:
    - pathlib.Path -> normalized POSIX string via normalize_abs_posix()
    - datetime / pandas.Timestamp -> ISO-8601 string
    - Enum / IntFlag members -> member name (or '+'-joined names for combined flags)
    - dataclasses -> dict of sanitized fields
    - numpy scalars / arrays -> Python numbers / lists
    - dicts -> sanitized dict with stringified keys
    - lists/tuples/sets -> lists with sanitized elements
    - None/str/int/float/bool left unchanged
    """
    if obj is None or isinstance(obj, (bool, str)):
        return obj

    if isinstance(obj, enum.Enum):
        if obj.name is not None:
            return obj.name
        return "+".join(m.name for m in type(obj) if m.value and (m & obj) == m)

    if isinstance(obj, (int, float)):
        return obj

    if isinstance(obj, Path):
        return normalize_abs_posix(obj)

    if isinstance(obj, _dt.datetime):
        return obj.isoformat()

    import numpy as np

    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()

    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.name: sanitize_for_json(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
            if f.repr
        }

    if isinstance(obj, dict):
        return {str(k): sanitize_for_json(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple, set)):
        return [sanitize_for_json(x) for x in obj]

    return str(obj)


def build_effective_parameters(
    load: Any, chart: Any, plots: Iterable[Any]
) -> dict[str, Any]:
    """
    Build a JSON-serializable mapping of the effective run parameters, shaped as
    {"load": {...}, "chart": {...}, "plots": [...]}.
    """
    return {
        "load": sanitize_for_json(load),
        "chart": sanitize_for_json(chart),
        "plots": [sanitize_for_json(p) for p in plots],
    }


def write_manifest(path: str | Path, manifest: Dict[str, Any]) -> None:
    """
    Write manifest JSON with UTF-8 encoding and stable formatting (indent=2 for readability).
    """
    Path(path).write_text(
        json.dumps(manifest, ensure_ascii=False, indent=2), encoding="utf-8"
    )


def utc_timestamp_seconds() -> str:
    """
    ISO-8601 UTC timestamp with seconds precision and Z suffix.
    """
    now = _dt.datetime.now(_dt.timezone.utc).replace(tzinfo=None)
    return now.isoformat(timespec="seconds") + "Z"


# -------------------------
# Run artifacts (shared by CLI and Gradio UI)
# -------------------------
def ensure_run_dir(base: Path | str = ".", prefix: str = "output") -> Path:
    """
    Create and return a per-run directory `base`/`prefix`/<YYYYmmddTHHMMSS>.
    """
    import time

    run_ts = time.strftime("%Y%m%dT%H%M%S", time.localtime())
    run_dir = Path(base) / prefix / run_ts
    run_dir.mkdir(parents=True, exist_ok=True)
    logger.debug("Ensured run_dir=%s", str(run_dir))
    return run_dir


def create_zip_async(zip_path: str, artifact_paths: list[Path]) -> threading.Thread:
    """
    Create a ZIP archive at zip_path containing artifact_paths in a background daemon thread.

    The returned Thread is already started. Failures inside the thread are logged;
    the thread does not raise to the caller.
    """
    import zipfile

    def _worker(zip_path_local: str, paths: list[Path]) -> None:
        try:
            with zipfile.ZipFile(
                zip_path_local, "w", compression=zipfile.ZIP_DEFLATED
            ) as zf:
                for p in paths:
                    pth = Path(p)
                    if pth.exists():
                        zf.write(str(pth), arcname=pth.name)
                    else:
                        logger.debug("Skipping missing artifact for zip: %s", str(pth))
            logger.debug("Async zip created at %s", zip_path_local)
        except Exception as e:
            logger.warning("Async zip failed for %s: %s", zip_path_local, e)

    thread = threading.Thread(
        target=_worker, args=(zip_path, list(artifact_paths)), daemon=True
    )
    thread.start()
    return thread


def write_text_report(report_text: str, run_dir: Path, short_hash: str) -> Path:
    """
    Write the textual report into run_dir/report-<short_hash>.txt using UTF-8.

    Best-effort: on IO failures the error is logged and the intended Path is returned
    (it will not exist).
    """
    target = Path(run_dir) / f"report-{short_hash}.txt"
    try:
        target.write_text(report_text, encoding="utf-8")
        logger.debug("Wrote textual report to %s", str(target))
    except OSError as e:
        logger.warning("Failed to write textual report to %s: %s", str(target), e)
    return target
