# Licensed to the Apache Software Foundation (ASF) under one or more
# contributor license agreements.  See the NOTICE file distributed with
# this work for additional information regarding copyright ownership.
# The ASF licenses this file to You under the Apache License, Version 2.0
# (the "License"); you may not use this file except in compliance with
# the License.  You may obtain a copy of the License at
#
#      https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Logging Configuration

All scheduler loggers live under the ``legacy_migrator`` namespace. Only the
CLI installs a handler, and it writes to stderr: stdout carries the JSON
envelope of each operation and nothing else.
"""

import logging
import sys


ROOT_LOGGER_NAME = "legacy_migrator"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
BANNER_WIDTH = 60

_configured = False


def setup_logging(level: int = logging.INFO) -> None:
    """
    Attach a stderr handler to the package logger.

    Repeated calls keep the first configuration.

    Args:
        level: Threshold for the package logger and its handler
    """
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    handler.setLevel(level)

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(level)
    package_logger.addHandler(handler)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, moved under the package namespace when needed."""
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


class LogContext:
    """
    Frames a long-running step (a scan, a batch assembly) in the log.

    A banner is written on entry; on exit either a completion line or, if the
    block raised, an error line. Exceptions are never suppressed.
    """

    def __init__(self, logger: logging.Logger, title: str) -> None:
        self.logger = logger
        self.title = title

    def __enter__(self) -> "LogContext":
        rule = "=" * BANNER_WIDTH
        self.logger.info(rule)
        self.logger.info(self.title)
        self.logger.info(rule)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            self.logger.error(f"{self.title} failed: {exc_val}")
        else:
            self.logger.info(f"{self.title} completed")


def log_progress(
    logger: logging.Logger,
    done: int,
    total: int,
    label: str,
    interval: int
) -> None:
    """Log ``label: done/total (pct%)`` every ``interval`` items and on the last one."""
    if total <= 0:
        return
    if done == total or done % interval == 0:
        logger.info(f"{label}: {done}/{total} ({100 * done // total}%)")
