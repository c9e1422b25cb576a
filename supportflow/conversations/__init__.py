from .models import (
    ConversationStatus,
    DeliveryStatus,
    InboundMessage,
    MessageType,
    SenderKind,
    StatusEvent,
)
from .outbound import OutboundMessenger
from .repository import (
    ConversationNotFoundError,
    ConversationRepository,
    InMemoryConversationRepository,
    PostgresConversationRepository,
)
from .service import ConversationService
from .state import InvalidTransitionError

__all__ = [
    "ConversationNotFoundError",
    "ConversationRepository",
    "ConversationService",
    "ConversationStatus",
    "DeliveryStatus",
    "InMemoryConversationRepository",
    "InboundMessage",
    "InvalidTransitionError",
    "MessageType",
    "OutboundMessenger",
    "PostgresConversationRepository",
    "SenderKind",
    "StatusEvent",
]
