"""
Service decorators for the subscription platform.
"""

import logging
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from django.db import DatabaseError

from apps.common.types import InternalError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def translate_storage_errors(func: F) -> F:
    """
    Decorator that reports unexpected storage failures as InternalError.

    Business errors pass through untouched. Expected integrity races are
    handled inside the service methods; any DatabaseError that still escapes
    has already rolled back its transaction and is surfaced with a stable code.
    """

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except DatabaseError as e:
            logger.exception("Storage failure in %s", func.__qualname__)
            raise InternalError("Unexpected storage failure") from e

    return wrapper  # type: ignore[return-value]
