"""Exceptions raised by the resolution and citation engine.

Every failure is raised close to where it happens and travels unchanged
to the HTTP boundary, where ``error_mapper.to_triple`` turns it into a
response.
"""


class BridgeError(Exception):
    """Base class for failures the bridge reports to its callers.

    Attributes:
        message: Short literal text returned as the response body
        status_code: HTTP status used when the error reaches the boundary
    """

    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UserInputError(BridgeError):
    """Raised for a missing or invalid request parameter."""


class EasyKeyParseError(UserInputError):
    """Raised when an easy key does not follow either surface form.

    Attributes:
        raw: The text that failed to parse
    """

    def __init__(self, raw: str, message: str = None):
        self.raw = raw
        super().__init__(
            message or "EasyKey must be of the form DoeTitle2000 or doe:2000title"
        )


class NotFoundError(BridgeError):
    """Raised when a key, collection or style matches nothing.

    Attributes:
        query: The original query string
    """

    def __init__(self, query: str, message: str = None):
        self.query = query
        super().__init__(message or f"{query} had no results")


class StyleNotInstalledError(NotFoundError):
    """Raised when a style id does not resolve to an installed style.

    Attributes:
        style_url: Canonical style URL that was attempted
    """

    def __init__(self, style_url: str):
        self.style_url = style_url
        super().__init__(style_url, f"Style {style_url} is not installed.")


class AmbiguousError(BridgeError):
    """Raised when a key resolves to more than one item.

    Attributes:
        query: The original query string
        count: Number of matching items
    """

    def __init__(self, query: str, count: int):
        self.query = query
        self.count = count
        super().__init__(f"{query} returned multiple items")


class UnexpectedError(BridgeError):
    """Raised when a collaborator fails in a way callers cannot fix."""

    status_code = 500
