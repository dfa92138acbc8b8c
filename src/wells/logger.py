# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for the report delivery engine.

This module provides a centralized logger lookup. The actual logging setup
(level, handlers, format) is left to the application entry point via
``logging.basicConfig()`` so the library never installs duplicate handlers.

Example:
    Typical usage in a module::

        from wells.logger import get_logger

        logger = get_logger("Wells.Store")
        logger.info("Report persisted")
"""

import logging


def get_logger(name: str = "Wells") -> logging.Logger:
    """Retrieve a logger instance.

    Args:
        name: The logger name. Defaults to "Wells".

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    return logging.getLogger(name)
