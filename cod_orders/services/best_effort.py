# cod_orders/services/best_effort.py
"""
Tolerated-failure policy.

Some steps around a transition must never block it: notifications, audit
rows, POS bookkeeping and the stock hold taken when a seller accepts.
They run here, after the transition itself has committed, each in its own
unit of work. A failure rolls back only that step and is logged with
enough context to reconcile by hand.
"""
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from sqlmodel import Session

logger = logging.getLogger(__name__)

T = TypeVar("T")


def best_effort(
    session: Session,
    step: str,
    fn: Callable[..., T],
    *args: Any,
    context: dict[str, Any] | None = None,
    **kwargs: Any,
) -> T | None:
    """
    Run `fn(*args, **kwargs)` and commit; on any error roll back and log.

    Returns the callable's result, or None if it failed.
    """
    try:
        result = fn(*args, **kwargs)
        session.commit()
        return result
    except Exception:
        session.rollback()
        logger.warning(
            "best-effort step %s failed; continuing (%s)",
            step,
            context or {},
            exc_info=True,
        )
        return None
