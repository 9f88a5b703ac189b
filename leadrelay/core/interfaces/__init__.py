"""
Collaborator interfaces (Protocols) the messaging core depends on.
"""

from .auto_response import AutoResponder
from .storage import MessageStore

__all__ = [
    "AutoResponder",
    "MessageStore",
]
