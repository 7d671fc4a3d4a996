"""Process memory diagnostics."""

from __future__ import annotations

import psutil


def memory_snapshot() -> dict[str, float]:
    """RSS/VMS of the current process in MB, for log context."""
    info = psutil.Process().memory_info()
    return {
        "rss_mb": round(info.rss / 1024 / 1024, 1),
        "vms_mb": round(info.vms / 1024 / 1024, 1),
    }
