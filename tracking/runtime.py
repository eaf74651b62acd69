"""Runtime helpers for counting how often scheduler functions execute."""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Dict, Optional

_LOCK = threading.RLock()
_DEFAULT_FILE = Path(__file__).resolve().parent / "function_call_counts.json"
_COUNTS: Dict[str, int] = {}
_LOADED = False


def _enabled() -> bool:
    return os.getenv("COURTBOT_TRACKING", "1").strip().lower() not in {"0", "false", "no", "off"}


def _tracking_file() -> Path:
    override = os.getenv("COURTBOT_TRACKING_FILE")
    if override:
        return Path(override)
    return _DEFAULT_FILE


def _load_counts_locked(path: Path) -> None:
    if not path.exists():
        return

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError, TypeError):
        return

    if not isinstance(data, dict):
        return

    for name, raw_count in data.items():
        if not name:
            continue
        try:
            count = int(raw_count)
        except (TypeError, ValueError):
            continue
        _COUNTS[str(name)] = max(count, 0)


def _persist_counts_locked(path: Path) -> None:
    """Persist the in-memory counts to disk. Caller must hold ``_LOCK``."""
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path: Optional[Path] = None
    try:
        with NamedTemporaryFile(
            "w", encoding="utf-8", dir=path.parent, delete=False
        ) as handle:
            json.dump(_COUNTS, handle, sort_keys=True)
            handle.write("\n")
            handle.flush()
            tmp_path = Path(handle.name)

        tmp_path.replace(path)
    except OSError:
        if tmp_path is not None:
            try:
                tmp_path.unlink()
            except OSError:
                pass


def t(func_name: str) -> None:
    """Record the provided function name each time it runs."""
    global _LOADED

    if not func_name or not _enabled():
        return

    path = _tracking_file()
    with _LOCK:
        if not _LOADED:
            _load_counts_locked(path)
            _LOADED = True
        _COUNTS[func_name] = _COUNTS.get(func_name, 0) + 1
        _persist_counts_locked(path)


def snapshot() -> Dict[str, int]:
    """Return a copy of the counts recorded by this process."""
    with _LOCK:
        return dict(_COUNTS)
