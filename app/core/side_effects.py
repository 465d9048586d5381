"""Post-commit side effects (mail, realtime broadcasts).

They are best effort: a failure is logged and never reaches the caller or
undoes the state change that triggered it. Callers must hand over plain
data, never ORM instances, because the work may run on another thread.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from flask import Flask, current_app

logger = logging.getLogger(__name__)

EXTENSION_KEY = "side_effects"


def init_side_effects(app: Flask) -> None:
    if app.config.get("SIDE_EFFECTS_INLINE"):
        app.extensions[EXTENSION_KEY] = None
        return
    app.extensions[EXTENSION_KEY] = ThreadPoolExecutor(
        max_workers=app.config.get("SIDE_EFFECT_WORKERS", 2),
        thread_name_prefix="side-effect",
    )


def _run_safely(label: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
    try:
        fn(*args, **kwargs)
    except Exception:
        logger.exception("Side effect %s failed", label)


def dispatch_side_effect(label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    executor = current_app.extensions.get(EXTENSION_KEY)
    if executor is None:
        _run_safely(label, fn, args, kwargs)
        return
    try:
        executor.submit(_run_safely, label, fn, args, kwargs)
    except RuntimeError:
        # Executor already shut down (interpreter exit); fall back to inline.
        _run_safely(label, fn, args, kwargs)
