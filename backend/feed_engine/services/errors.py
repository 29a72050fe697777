"""Feed engine exception types."""


class FeedEngineError(Exception):
    """Base class for feed engine errors."""
    pass


class InvalidCursorError(FeedEngineError):
    """Raised when a pagination cursor cannot be decoded or does not point at a page boundary."""
    pass


class CursorExpiredError(FeedEngineError):
    """Raised when a cursor references a feed generation that is no longer cached.

    Callers restart pagination from the first page.
    """

    def __init__(self, generation: str):
        super().__init__(f"Feed generation {generation} has expired; restart pagination")
        self.generation = generation


class MalformedInteractionError(FeedEngineError):
    """Raised when an interaction event fails validation; the event is dropped."""
    pass
