"""Retry decorator for transient collaborator failures."""

from __future__ import annotations

import logging
import time
from functools import wraps
from typing import Callable, Tuple, Type, TypeVar, ParamSpec


P = ParamSpec("P")
R = TypeVar("R")

logger = logging.getLogger(__name__)


def retry(
    *,
    attempts: int = 3,
    delay: float = 0.1,
    backoff: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Retry decorator with exponential backoff; the last error is re-raised."""

    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            current_delay = delay
            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as exc:
                    if attempt == attempts:
                        raise
                    logger.warning(
                        "retrying_call",
                        extra={
                            "function": func.__qualname__,
                            "attempt": attempt,
                            "delay": current_delay,
                            "error": repr(exc),
                        },
                    )
                    sleep(current_delay)
                    current_delay *= backoff
            raise RuntimeError("retry loop exited without a result")

        return wrapper

    return decorator
