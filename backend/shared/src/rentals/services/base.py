"""Service boundary for ledger operations.

Typed BookingError subclasses propagate to the caller unchanged. Anything
else is logged with the operation name and turned into a generic failure
envelope, so stack traces never reach the caller.
"""

import functools
import math
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from rentals.models import (
    ERROR_MESSAGES,
    BookingError,
    ErrorCode,
    OperationResult,
    Pagination,
    ValidationError,
)
from rentals.utils.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])
T = TypeVar("T")


def success(data: Any = None, message: str = "Operation successful") -> OperationResult[Any]:
    return OperationResult(success=True, message=message, data=data)


def failure(message: str) -> OperationResult[Any]:
    return OperationResult(success=False, message=message)


def service_operation(name: str) -> Callable[[F], F]:
    """Wrap a public service method in the error boundary.

    Args:
        name: Operation name used in logs
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except BookingError:
                raise
            except Exception:
                logger.exception("Unexpected error in %s", name)
                return failure(ERROR_MESSAGES[ErrorCode.INTERNAL])

        return wrapper  # type: ignore[return-value]

    return decorator


MAX_PAGE_SIZE = 100


def paginate(items: Sequence[T], page: int, limit: int) -> tuple[list[T], Pagination]:
    """Slice an already-filtered, already-sorted sequence into one page.

    Raises:
        ValidationError: If page or limit is out of range
    """
    if page < 1:
        raise ValidationError("Page must be 1 or greater")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}")

    total_pages = math.ceil(len(items) / limit)
    start = (page - 1) * limit
    return list(items[start : start + limit]), Pagination(
        current_page=page,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_previous_page=page > 1,
        limit=limit,
    )
