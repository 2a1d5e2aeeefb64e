# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
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

"""Logging level configuration for loomgraph.

Logging Levels (loomgraph convention):
- TRACE (5): Per-step state snapshots, per-message stamping
- DEBUG (10): Node execution, checkpoint save/load, branch scheduling
- INFO (20): Approval decisions, resumes, completed runs
- WARNING (30): Step limits, branch failures, swallowed backend errors
- ERROR (40): Operation failures
"""

import logging
from typing import Any

# Custom TRACE level for very verbose logging (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

ROOT_LOGGER = "loomgraph"

# Third-party loggers to silence (they generate too much noise)
NOISY_LOGGERS = [
    "asyncio",
    "concurrent.futures",
]


def trace(logger: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
    """Log at TRACE level (5) - for very verbose per-operation logs."""
    if logger.isEnabledFor(TRACE):
        logger.log(TRACE, message, *args, **kwargs)


def resolve_level(log_level: str) -> int:
    """Translate a level name (including TRACE) to its numeric value."""
    level_upper = log_level.upper()
    if level_upper == "TRACE":
        return TRACE
    return getattr(logging, level_upper, logging.INFO)


def configure_logging_levels(log_level: str = "INFO", file_logging_enabled: bool = True) -> None:
    """Configure logging levels, silencing noisy third-party loggers.

    Args:
        log_level: Desired log level for loomgraph loggers.
            Supported: TRACE (5), DEBUG, INFO, WARNING, ERROR, CRITICAL
        file_logging_enabled: If True, keeps the loomgraph logger at INFO minimum
            so a file handler can still capture INFO+ messages.
    """
    level = resolve_level(log_level)

    if file_logging_enabled:
        effective_level = min(level, logging.INFO)
    else:
        effective_level = level
    logging.getLogger(ROOT_LOGGER).setLevel(effective_level)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


__all__ = ["TRACE", "trace", "resolve_level", "configure_logging_levels", "NOISY_LOGGERS"]
