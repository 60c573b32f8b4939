# Copyright 2024-2025 The vLLM Production Stack Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
import logging
from logging import Logger
from typing import Dict, Union

_loggers: Dict[str, Logger] = {}
_log_level: int = logging.INFO


def build_format(color: str) -> str:
    reset = "\x1b[0m"
    underline = "\x1b[3m"
    return (
        f"{color}[%(asctime)s] %(levelname)s:{reset} %(message)s "
        f"{underline}(%(filename)s:%(lineno)d:%(name)s){reset}"
    )


class CustomFormatter(logging.Formatter):
    grey = "\x1b[1m"
    green = "\x1b[32;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"

    FORMATS = {
        logging.DEBUG: build_format(grey),
        logging.INFO: build_format(green),
        logging.WARNING: build_format(yellow),
        logging.ERROR: build_format(red),
        logging.CRITICAL: build_format(bold_red),
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno)
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


def _to_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    # uvicorn accepts "trace", stdlib logging does not
    if level.lower() == "trace":
        return logging.DEBUG
    return logging.getLevelName(level.upper())


def init_logger(name: str, log_level: Union[int, str, None] = None) -> Logger:
    """Return the module logger, attaching the colored stream handler once."""
    if name in _loggers:
        return _loggers[name]

    logger = logging.getLogger(name)
    level = _to_level(log_level) if log_level is not None else _log_level
    logger.setLevel(level)

    if not any(getattr(h, "_provisioner_handler", False) for h in logger.handlers):
        ch = logging.StreamHandler()
        ch.setLevel(logging.DEBUG)
        ch.setFormatter(CustomFormatter())
        ch._provisioner_handler = True
        logger.addHandler(ch)
    logger.propagate = False

    _loggers[name] = logger
    return logger


def set_log_level(log_level: Union[int, str]) -> None:
    """Apply a level to every logger created through init_logger."""
    global _log_level
    _log_level = _to_level(log_level)
    for logger in _loggers.values():
        logger.setLevel(_log_level)
