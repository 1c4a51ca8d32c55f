"""Client-facing error hierarchy."""


class LinearKVError(Exception):
    """Base error."""

    status_code = 400


class InvalidArgument(LinearKVError):
    """Raised when a required identifier such as requestId or key is empty."""


class MalformedInput(LinearKVError):
    """Raised when a request body cannot be parsed into the expected shape."""


class MethodNotSupported(LinearKVError):
    """Raised when the key/value endpoint is called with an unsupported verb."""

    status_code = 405
