"""Package loggers and the per-iteration status report.

Every module logs through ``get_logger(__name__)``. Loggers live under the
``nonlin`` namespace, write ``[LEVEL] name: message`` lines to stderr and do
not propagate to the root logger, so applications embedding the solvers see
nothing below WARNING unless they ask for it.

The status report enabled by ``SolverConfig.print_status`` is separate: it
goes to stdout through the ``nonlin.status`` logger and ignores the level
set with :func:`set_log_level`.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

_PACKAGE = "nonlin"
_STATUS = "nonlin.status"
_LINE_FORMAT = "[%(levelname)s] %(name)s: %(message)s"

_level = logging.WARNING
_registry: dict[str, logging.Logger] = {}


def _as_level(level: int | str) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.WARNING)
    return level


def _stream_handler(stream, level: int, fmt: str) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def _package_loggers():
    return (lg for key, lg in _registry.items() if key != _STATUS)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return the package logger for ``name``, creating it on first use.

    Names outside the package namespace are placed under it, so
    ``get_logger("fit")`` and ``get_logger("nonlin.fit")`` are the same
    logger.

    Example:
        >>> from nonlin.logging import get_logger
        >>> log = get_logger(__name__)
        >>> log.debug("Jacobian refreshed")
    """
    if not name or name == _PACKAGE:
        full = _PACKAGE
    elif name.startswith(_PACKAGE + "."):
        full = name
    else:
        full = f"{_PACKAGE}.{name}"

    cached = _registry.get(full)
    if cached is not None:
        return cached

    log = logging.getLogger(full)
    if not log.handlers:
        log.setLevel(_level)
        log.addHandler(_stream_handler(sys.stderr, _level, _LINE_FORMAT))
        log.propagate = False
    _registry[full] = log
    return log


def set_log_level(level: int | str) -> None:
    """Change the level of every package logger and of loggers created later.

    Args:
        level: A ``logging`` level constant or its name, e.g. ``"DEBUG"``.
    """
    global _level
    _level = _as_level(level)
    for log in _package_loggers():
        log.setLevel(_level)
        for handler in log.handlers:
            handler.setLevel(_level)


def configure_logging(
    level: int | str = logging.WARNING,
    format_string: Optional[str] = None,
    stream: Optional[object] = None,
) -> None:
    """Point every package logger at ``stream`` with a fresh handler.

    Args:
        level: Level for loggers and handlers (default: WARNING).
        format_string: Record format; defaults to ``[LEVEL] name: message``.
        stream: Destination (default: ``sys.stderr``).
    """
    global _level
    _level = _as_level(level)
    target = sys.stderr if stream is None else stream
    for log in _package_loggers():
        for old in list(log.handlers):
            log.removeHandler(old)
        log.setLevel(_level)
        log.addHandler(_stream_handler(target, _level, format_string or _LINE_FORMAT))


def _status_logger() -> logging.Logger:
    log = _registry.get(_STATUS)
    if log is None:
        log = logging.getLogger(_STATUS)
        if not log.handlers:
            log.setLevel(logging.INFO)
            log.addHandler(_stream_handler(sys.stdout, logging.INFO, "%(message)s"))
            log.propagate = False
        _registry[_STATUS] = log
    return log


def print_status(
    iteration: int,
    fcn_count: int,
    jacobian_count: int,
    xnorm: float,
    fnorm: float,
) -> None:
    """Report one iteration on standard output.

    Args:
        iteration: Iteration index.
        fcn_count: Function evaluations so far.
        jacobian_count: Jacobian evaluations so far.
        xnorm: Largest change in any variable during the iteration.
        fnorm: Largest residual magnitude at the current point.
    """
    log = _status_logger()
    # follow sys.stdout if it was replaced after the handler was made
    for handler in log.handlers:
        if isinstance(handler, logging.StreamHandler) and handler.stream is not sys.stdout:
            handler.setStream(sys.stdout)
    log.info(
        "\nIteration: %d\nFunction Calls: %d\nJacobian Calls: %d"
        "\nChange in Variable: %.6g\nResidual: %.6g",
        iteration,
        fcn_count,
        jacobian_count,
        xnorm,
        fnorm,
    )


__all__ = [
    "configure_logging",
    "get_logger",
    "print_status",
    "set_log_level",
]
