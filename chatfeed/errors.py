class ChatFeedError(Exception):
    """Base exception for chatfeed domain errors."""

    pass


class IdentityError(ChatFeedError):
    """Raised when no valid user identity is available."""

    pass


class BackendError(ChatFeedError):
    """Raised by backends when a transport call fails."""

    pass


class MalformedEventError(ChatFeedError):
    """Raised when a backend event payload cannot be applied."""

    pass
