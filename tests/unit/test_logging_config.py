# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
# SPDX-License-Identifier: Apache-2.0

"""Tests for logging level configuration."""

import logging

from loomgraph.core.logging_config import (
    NOISY_LOGGERS,
    TRACE,
    configure_logging_levels,
    resolve_level,
    trace,
)


class TestLoggingConfig:
    """Tests for level resolution and the TRACE helper."""

    def test_resolve_level(self):
        assert resolve_level("trace") == TRACE
        assert resolve_level("DEBUG") == logging.DEBUG
        assert resolve_level("nonsense") == logging.INFO

    def test_file_logging_keeps_info(self):
        """With file logging the package logger never goes above INFO."""
        configure_logging_levels("ERROR", file_logging_enabled=True)
        assert logging.getLogger("loomgraph").level == logging.INFO

        configure_logging_levels("ERROR", file_logging_enabled=False)
        assert logging.getLogger("loomgraph").level == logging.ERROR

    def test_noisy_loggers_silenced(self):
        configure_logging_levels("DEBUG")
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_trace_only_when_enabled(self, caplog):
        """trace() emits records only when TRACE is enabled."""
        logger = logging.getLogger("loomgraph.test")

        with caplog.at_level(logging.DEBUG, logger="loomgraph"):
            trace(logger, "hidden %s", "value")
        assert not any("hidden" in r.getMessage() for r in caplog.records)

        with caplog.at_level(TRACE, logger="loomgraph"):
            trace(logger, "shown %s", "value")
        assert any(r.getMessage() == "shown value" for r in caplog.records)
