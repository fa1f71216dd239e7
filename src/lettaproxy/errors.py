"""Errors raised while forwarding a request.

Each error maps to the status code the caller receives. The app turns them
into plain-text responses that still carry the CORS headers.
"""


class ProxyError(Exception):
    """Base class for failures the proxy reports to the caller itself."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BodyReadError(ProxyError):
    """The inbound request body could not be read."""


class RequestBuildError(ProxyError):
    """The outbound request could not be constructed."""


class UploadFormError(ProxyError):
    """The inbound multipart upload could not be parsed or re-encoded."""


class MissingFileError(UploadFormError):
    """The multipart upload has no file part named ``file``."""

    status_code = 400


class UpstreamConnectError(ProxyError):
    """Talking to the target API failed at the transport level."""

    status_code = 502
