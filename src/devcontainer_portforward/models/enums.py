"""
Enumeration types for the port forward agent.

This module defines the enumeration types used for listen events,
forward session lifecycle tracking and logging configuration.
"""

from enum import Enum


# =============================================================================
# Listen-Related Enums
# =============================================================================


class ListenEventKind(str, Enum):
    """Change observed between two consecutive listen snapshots."""

    ADDED = "added"  # Endpoint appeared since the previous poll
    REMOVED = "removed"  # Endpoint disappeared since the previous poll


# =============================================================================
# Forward-Related Enums
# =============================================================================


class SessionState(str, Enum):
    """
    Forward session lifecycle status.

    State transitions:
        STARTING -> LISTENING (remote listener opened)
        STARTING -> STOPPED (remote listener could not be opened)
        LISTENING -> DRAINING (cancelled or accept failed)
        DRAINING -> STOPPED (all in-flight relays finished)
    """

    STARTING = "starting"
    LISTENING = "listening"
    DRAINING = "draining"
    STOPPED = "stopped"


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels.

    Levels (from most to least verbose):
        - FULL: Complete trace with detailed stack information
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
