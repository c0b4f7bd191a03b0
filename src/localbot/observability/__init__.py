"""
observability/ — LocalBot structured logging
"""

from localbot.observability.logger import (
    bind_session,
    bind_turn,
    clear_session,
    get_logger,
    setup_logging,
)

__all__ = [
    "bind_session",
    "bind_turn",
    "clear_session",
    "get_logger",
    "setup_logging",
]
