"""Run artifact helpers."""

from __future__ import annotations

import json
import os
import platform
import subprocess
import time
from pathlib import Path
from typing import Mapping


def git_sha() -> str:
    try:
        out = subprocess.check_output(["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL)
        return out.decode().strip()
    except (OSError, subprocess.CalledProcessError):  # pragma: no cover - git may be unavailable
        return "unknown"


def write_manifest(
    path: str | Path,
    *,
    config: Mapping[str, object],
    dataset_provenance: Mapping[str, object],
) -> str:
    """Write a manifest JSON file capturing reproducibility metadata."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    manifest = {
        "git_sha": git_sha(),
        "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "config": config,
        "dataset": dict(dataset_provenance),
        "environment": {
            "python": platform.python_version(),
            "workers": os.environ.get("EASYMLP_MAX_WORKERS", "1"),
        },
    }
    path.write_text(json.dumps(manifest, indent=2))
    return str(path)


def write_json(path: str | Path, payload: Mapping[str, object]) -> str:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, sort_keys=True, indent=2))
    return str(path)


__all__ = ["git_sha", "write_json", "write_manifest"]
