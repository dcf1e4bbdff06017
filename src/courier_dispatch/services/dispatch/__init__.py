"""Dispatch view session and its save gateway."""

from .gateway import DispatchGateway, SaveAssignmentError
from .session import DispatchSession, InvalidTransitionError, SessionState

__all__ = [
    "DispatchGateway",
    "DispatchSession",
    "InvalidTransitionError",
    "SaveAssignmentError",
    "SessionState",
]
