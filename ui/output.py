"""
Output formatting -- JSON and plain text.
"""
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict

from meter.runner import RunResult


def create_result_json(result: RunResult) -> Dict[str, Any]:
    """Build a JSON-serialisable dict for one finished run."""
    data: Dict[str, Any] = {"timestamp": datetime.now(timezone.utc).isoformat()}
    data.update(result.to_dict())
    return data


def create_failure_json(error: BaseException) -> Dict[str, Any]:
    """The JSON shape of a failed run: no scalars, only the error."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "success": False,
        "error": str(error),
        "error_type": type(error).__name__,
    }


def save_json(result: Dict[str, Any], filepath: str) -> None:
    """Write *result* to *filepath* atomically (write-tmp then rename)."""
    dir_path = os.path.dirname(filepath) or "."
    tmp = os.path.join(dir_path, f".tmp_{os.path.basename(filepath)}")

    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(result, fh, indent=2, ensure_ascii=False)
        os.replace(tmp, filepath)
    except OSError as exc:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise OSError(f"Failed to save JSON to {filepath}: {exc}") from exc


def format_text_result(result: RunResult) -> str:
    sep = "=" * 50
    ping = f"{result.ping_ms:.1f} ms" if result.ping_has_data else "no data"
    upload = f"{result.upload_mbps:.2f} Mbps"
    if result.upload_simulated:
        upload += " (simulated)"
    return (
        f"{sep}\n"
        f"linkgauge results\n"
        f"{sep}\n"
        f"Ping: {ping}\n"
        f"Download: {result.download_mbps:.2f} Mbps\n"
        f"Upload: {upload}\n"
        f"{sep}"
    )
