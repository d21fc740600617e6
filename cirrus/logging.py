"""Launcher log sinks.

Every cirrus module logs through ``logger.bind(component=...)``. Output is
off until ``setup_logging`` runs, so importing cirrus stays quiet.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Literal

from loguru import logger

logger.disable("cirrus")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> <level>{level: <7}</level> <cyan>[{extra[component]}]</cyan> {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <7} [{extra[component]}] {message}"


@dataclass(frozen=True, slots=True)
class LogConfig:
    """The ``[logging]`` table. ``file`` always records DEBUG and above."""

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    logger.enable("cirrus")
    logger.configure(extra={"component": "cirrus"})
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(
            logger.add(sys.stderr, level=config.level, format=CONSOLE_FORMAT, filter="cirrus")
        )

    if config.file:
        # Credentials can appear in boto3 frame locals.
        handler_ids.append(
            logger.add(
                config.file,
                level="DEBUG",
                format=FILE_FORMAT,
                rotation=config.rotation,
                retention=config.retention,
                diagnose=False,
                enqueue=True,
                filter="cirrus",
            )
        )

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("cirrus")
