from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path
from typing import Optional


_sink_path: Optional[Path] = None
_sink_lock = threading.Lock()


def now_str() -> str:
    return datetime.now().strftime("%H:%M:%S")


def configure_log_file(path: Optional[str]) -> None:
    """Mirror every log line into ``path`` (append mode). ``None`` disables it."""
    global _sink_path
    if not path:
        _sink_path = None
        return
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    _sink_path = p


def log(scope: str, message: str) -> None:
    line = f"[{now_str()}] [{scope}] {message}"
    print(line, flush=True)
    sink = _sink_path
    if sink is None:
        return
    stamp = datetime.now().isoformat(timespec="seconds")
    with _sink_lock, sink.open("a", encoding="utf-8") as f:
        f.write(f"{stamp} [{scope}] {message}\n")
