"""Utilities for reporting progress from core operations."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Callable


ProgressHook = Callable[[int, str], None]


def emit_progress(hooks: Sequence[ProgressHook], pct: float, msg: str) -> None:
    """Notify all hooks about progress.

    Parameters
    ----------
    hooks:
        A sequence of callback functions to be invoked. Each callback receives
        the completion percentage (0..100) and a short human-readable message.
    pct:
        Completion percentage; values outside 0..100 are clamped.
    msg:
        Description of the current step.
    """

    if not hooks:
        return
    value = int(round(min(100.0, max(0.0, float(pct)))))
    for hook in hooks:
        hook(value, msg)


def scaled(hooks: Sequence[ProgressHook], start: float, end: float) -> list[ProgressHook]:
    """Wrap ``hooks`` so a sub-task's 0..100 range lands in ``start..end``."""

    if not hooks:
        return []
    span = end - start

    def _hook(pct: int, msg: str) -> None:
        emit_progress(hooks, start + span * pct / 100.0, msg)

    return [_hook]


def step_pct(index: int, total: int, start: float, end: float) -> float:
    if total <= 0:
        return end
    return start + (end - start) * index / total
