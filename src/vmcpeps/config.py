"""JAX and logging configuration module.

This module must be imported before any other JAX imports to ensure
64-bit precision is enabled throughout the codebase.
"""
from __future__ import annotations

import logging
import os

from jax import config

# Boundary-MPS truncation thresholds are meaningless in single precision
config.update("jax_enable_x64", True)


def setup_logging() -> None:
    """Configure logging based on environment variables.

    Control log level via VMCPEPS_LOG_LEVEL environment variable.

    Examples:
        # Default (WARNING level)
        python run.py

        # Debug mode - log every boundary-MPS absorption and sweep
        VMCPEPS_LOG_LEVEL=DEBUG python run.py
    """
    level_name = os.environ.get("VMCPEPS_LOG_LEVEL", "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)

    logging.basicConfig(
        level=level,
        format="%(name)s - %(levelname)s - %(message)s",
    )


# Configure logging on import
setup_logging()
