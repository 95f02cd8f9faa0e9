from app.models.conversation import Conversation, Message
from app.models.profile import Profile
from app.models.typing_indicator import TypingIndicator

__all__ = ["Conversation", "Message", "Profile", "TypingIndicator"]
