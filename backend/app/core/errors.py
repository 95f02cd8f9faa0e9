"""Error taxonomy shared by the store boundary, the chat core and the API."""


class ChatError(Exception):
    pass


class NotFoundError(ChatError):
    """A lookup found nothing where a record was expected."""


class ConflictError(ChatError):
    """A uniqueness constraint rejected a write."""


class ConflictRetryExhausted(ConflictError):
    pass


class ValidationError(ChatError):
    """Input rejected before any store call."""


class AuthorizationError(ChatError):
    """The access policy denied the operation."""


class TransportError(ChatError):
    """A live subscription lost its connection to the change feed."""
