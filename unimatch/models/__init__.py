"""
UniMatch — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from unimatch.models.user import Gender, InterestedIn, User
from unimatch.models.match import Match, Swipe, SwipeKind, canonical_pair
from unimatch.models.conversation import Conversation, Message, MessageRead, MessageType

__all__ = [
    "User",
    "Gender",
    "InterestedIn",
    "Match",
    "Swipe",
    "SwipeKind",
    "canonical_pair",
    "Conversation",
    "Message",
    "MessageRead",
    "MessageType",
]
