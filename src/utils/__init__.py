"""Utility functions."""

from src.utils.audit import SYSTEM_ACTOR, get_actor, get_client_ip, log_action

__all__ = [
    "SYSTEM_ACTOR",
    "get_actor",
    "get_client_ip",
    "log_action",
]
