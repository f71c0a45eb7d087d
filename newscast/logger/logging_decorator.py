"""
Centralized logging utilities for the newscast workflow.

Every component logs through a named logger configured by ``setup_logging``.
Costed or slow functions are wrapped with ``log_function`` so entry, exit,
duration and failures land in the same file without boilerplate.

Usage:
    from newscast.logger import setup_logging, log_function, format_fields

    logger = setup_logging("pipeline", "logs/pipeline.log", verbose=True)
    logger.info(format_fields("budget consumed", job_id="abc", used=12))

    @log_function(logger_name="sources", log_args=True)
    def fetch_feed(url):
        ...
"""

import functools
import json
import logging
import os
import time
from pathlib import Path
from typing import Optional, Callable, Any


DEFAULT_LOG_DIR = "logs"


def _default_log_file(logger_name: str) -> str:
    log_dir = os.getenv("LOG_DIR", DEFAULT_LOG_DIR)
    return str(Path(log_dir) / f"{logger_name.split('.')[0]}.log")


def setup_logging(
    logger_name: str,
    log_file: Optional[str] = None,
    verbose: bool = False,
    level: int = logging.INFO,
) -> logging.Logger:
    """
    Set up a named logger with a file handler and an optional console handler.

    Args:
        logger_name: Name for the logger (e.g., "pipeline")
        log_file: Path to log file (default: "$LOG_DIR/<logger_name>.log")
        verbose: If True, also log to the console at DEBUG level
        level: Base logging level (default: logging.INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Avoid adding multiple handlers if already configured
    if logger.handlers:
        if verbose and not any(
            isinstance(h, logging.StreamHandler)
            and not isinstance(h, logging.FileHandler)
            for h in logger.handlers
        ):
            logger.addHandler(_console_handler())
            logger.setLevel(logging.DEBUG)
        return logger

    logger.setLevel(logging.DEBUG if verbose else level)

    log_path = Path(log_file or _default_log_file(logger_name))
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    logger.addHandler(file_handler)

    if verbose:
        logger.addHandler(_console_handler())

    return logger


def _console_handler() -> logging.Handler:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    return console_handler


def format_fields(label: str, /, **fields: Any) -> str:
    """
    Render a log line as ``label | key=value key=value``.

    Dicts and lists are serialized as compact JSON so nested observation data
    (cursor, progress) stays on one line.

    Args:
        label: Human readable event label
        **fields: Key/value pairs to append, None values are skipped

    Returns:
        Single-line message
    """
    parts = []
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, (dict, list, tuple)):
            rendered = json.dumps(value, ensure_ascii=False, default=str)
        else:
            rendered = str(value)
        parts.append(f"{key}={rendered}")
    if not parts:
        return label
    return f"{label} | {' '.join(parts)}"


def log_function(
    logger_name: Optional[str] = None,
    log_file: Optional[str] = None,
    level: int = logging.INFO,
    log_args: bool = False,
    log_result: bool = False,
    log_execution_time: bool = True,
) -> Callable:
    """
    Decorator to log function entry, exit, execution time, and exceptions.

    Args:
        logger_name: Logger name (if None, uses the decorated function's module name)
        log_file: Optional custom log file path (if None, uses existing logger config)
        level: Log level for entry/exit messages (default: logging.INFO)
        log_args: If True, log function arguments (default: False)
        log_result: If True, log return value (default: False)
        log_execution_time: If True, log execution duration (default: True)

    Returns:
        Decorated function with logging

    Example:
        @log_function(logger_name="tts", log_args=True)
        def synthesize_line(text, speaker):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            name = logger_name or func.__module__

            if log_file:
                logger = setup_logging(
                    logger_name=f"{name}.{func.__name__}",
                    log_file=log_file,
                    level=level,
                )
            else:
                logger = logging.getLogger(name)
                if not logger.handlers:
                    logger = setup_logging(name, level=level)

            func_name = func.__qualname__
            log_msg = f"Calling {func_name}"

            if log_args and (args or kwargs):
                args_repr = [_short_repr(a) for a in args]
                kwargs_repr = [f"{k}={_short_repr(v)}" for k, v in kwargs.items()]
                log_msg += f" with args: {', '.join(args_repr + kwargs_repr)}"

            logger.log(level, log_msg)
            start_time = time.time()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                execution_time = time.time() - start_time
                logger.error(
                    f"Exception in {func_name} after {execution_time:.2f}s: {type(e).__name__}: {e}",
                    exc_info=True,
                )
                raise

            completion_msg = f"Completed {func_name}"
            if log_execution_time:
                completion_msg += f" in {time.time() - start_time:.2f}s"
            if log_result:
                completion_msg += f" with result: {_short_repr(result)}"
            logger.log(level, completion_msg)

            return result

        return wrapper

    return decorator


def _short_repr(value: Any, limit: int = 200) -> str:
    rendered = repr(value)
    if len(rendered) > limit:
        return rendered[:limit] + "..."
    return rendered
