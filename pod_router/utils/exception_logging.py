"""
Utility functions for exception logging, particularly for relay failures that
surface as exception groups from concurrently running pump tasks.
"""

import logging


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ or __repr__ might fail.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _safe_get_exceptions(exception_group) -> list:
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def find_exception_in_exception_groups(exception: Exception, target_type):
    """
    Recursively search through an exception and its sub-exceptions to find
    if any exception is of the target type.

    Returns:
        The first exception matching the target type, or None if not found
    """
    if isinstance(exception, target_type):
        return exception

    if hasattr(exception, "exceptions"):
        for sub_exc in _safe_get_exceptions(exception):
            inner_exc = find_exception_in_exception_groups(sub_exc, target_type)
            if inner_exc is not None:
                return inner_exc

    return None


def format_exception_message(exception: Exception) -> str:
    """
    Format an exception message, including sub-exceptions of exception groups.
    """
    sub_exceptions = _safe_get_exceptions(exception) if hasattr(exception, "exceptions") else []
    if not sub_exceptions:
        return _safe_str(exception)
    parts = [f"{type(sub).__name__}: {_safe_str(sub)}" for sub in sub_exceptions]
    return f"{_safe_str(exception)} [{'; '.join(parts)}]"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with detailed information, including each sub-exception
    when an exception group is given.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[PROXY ERROR]", "[WS PROXY ERROR]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    safe_prefix = _safe_str(prefix) if prefix is not None else ""
    sub_exceptions = (
        _safe_get_exceptions(exception)
        if exception is not None and hasattr(exception, "exceptions")
        else []
    )

    if sub_exceptions:
        logger.log(
            level,
            f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: {_safe_str(exception)}",
        )
        for i, sub_exc in enumerate(sub_exceptions):
            logger.log(
                level,
                f"{safe_prefix} Sub-exception {i+1}: {type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                exc_info=sub_exc,
            )
        return

    logger.log(
        level,
        f"{safe_prefix} Exception: {_safe_str(exception)}",
        exc_info=exception if exception is not None else False,
    )
