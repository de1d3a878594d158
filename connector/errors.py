"""
Exception taxonomy for the data connector.
Every error raised by the library derives from ConnectorError.
"""

from typing import Any, Dict, Optional


class ConnectorError(Exception):
    """Base exception for connector errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def add_context(self, **context: Any) -> 'ConnectorError':
        """
        Attach operation context without overwriting existing keys.

        The innermost caller knows the most specific endpoint, so values
        set first are kept.
        """
        for key, value in context.items():
            self.context.setdefault(key, value)
        return self

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} [{details}]"


class ValidationError(ConnectorError):
    """Raised when caller-supplied arguments violate a precondition."""
    pass


class NotFoundError(ConnectorError):
    """Raised when a device or entity does not exist in the account."""
    pass


class NoDataError(ConnectorError):
    """Raised when a device exists but has no sensors to read from."""
    pass


class HttpError(ConnectorError):
    """Raised on a non-2xx response, a failed envelope, or a transport failure."""

    def __init__(
        self,
        status: Optional[int],
        url: str,
        body: str = "",
        message: Optional[str] = None
    ):
        if message is None:
            status_text = status if status is not None else "no response"
            message = f"HTTP request failed ({status_text}) for {url}: {body[:500]}"
        super().__init__(message, context={'url': url})
        self.status = status
        self.url = url
        self.body = body


class ParseError(ConnectorError):
    """Raised on a malformed response body or unparseable timestamp."""
    pass


class QueryTimeoutError(ConnectorError):
    """Raised when an operation exceeds its caller-supplied timeout."""
    pass
