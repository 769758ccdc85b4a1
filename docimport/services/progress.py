from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Batch progress display with tqdm (TTY only).

A single tqdm instance per import run, advanced once per batch. In non-TTY
environments (CI, redirected output) no bar is created so logs stay free of
control sequences; the persisted ImportProgress is the source of truth either
way.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ProgressTracker:
    """Progress tracker over the batches of one import."""

    def __init__(self, total_batches: int, *, description: str = "Importing", enabled: bool | None = None) -> None:
        """
        Args:
            total_batches: Number of batches the run is expected to process
            description: Progress bar label
            enabled: Force on/off; None means "only when stdout is a TTY"
        """
        self.total_batches = total_batches
        self.description = description
        self.current_batch = 0

        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_batches,
                desc=description,
                unit="batch",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def advance(self, *, success: int = 0, errors: int = 0) -> None:
        """Mark one batch as done and show running counters."""
        self.current_batch += 1
        if self.enabled and self.pbar is not None:
            self.pbar.update(1)
            self.pbar.set_postfix(ok=success, err=errors)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
