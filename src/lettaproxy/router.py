"""Request routing - decides which forwarder handles each request."""

import logging

from starlette.requests import ClientDisconnect, Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from .cors import apply_cors_headers
from .errors import BodyReadError, UploadFormError
from .protocol import Forwarder, InboundRequest
from .upload import MAX_UPLOAD_BYTES, TOO_LARGE_MESSAGE

logger = logging.getLogger(__name__)

MULTIPART_FORM_DATA = "multipart/form-data"


def is_upload(method: str, content_type: str) -> bool:
    """A request is a file upload if it's a POST carrying multipart form data."""
    return "POST" in method and MULTIPART_FORM_DATA in content_type.lower()


def preflight_response() -> Response:
    """Answer a CORS preflight locally. Never forwarded."""
    response = Response(status_code=200)
    apply_cors_headers(response.headers)
    return response


async def read_body(request: Request, limit: int | None = None) -> bytes:
    """Read the whole request body once.

    Raises:
        BodyReadError: if the client goes away mid-body
        UploadFormError: if the body grows past ``limit`` bytes
    """
    chunks: list[bytes] = []
    size = 0
    try:
        async for chunk in request.stream():
            size += len(chunk)
            if limit is not None and size > limit:
                logger.warning(f"Request body exceeds {limit} bytes, rejecting")
                raise UploadFormError(TOO_LARGE_MESSAGE)
            chunks.append(chunk)
    except ClientDisconnect as e:
        logger.error("Error reading request body: client disconnected")
        raise BodyReadError("client disconnected while sending the request body") from e

    return b"".join(chunks)


class Router:
    """Routes each inbound request to the standard or the upload forwarder.

    OPTIONS is answered here. Anything else has its body captured once and
    goes to one forwarder, chosen from the method and Content-Type header
    alone.
    """

    def __init__(self, standard: Forwarder, upload: Forwarder):
        self.standard = standard
        self.upload = upload

    def select(self, method: str, content_type: str) -> Forwarder:
        if is_upload(method, content_type):
            logger.info("Handling file upload")
            return self.upload
        logger.info("Proxying standard request")
        return self.standard

    async def handle(self, request: Request) -> Response:
        if request.method == "OPTIONS":
            return preflight_response()

        logger.info(f"Request: {request.method} {request.url.path}")
        logger.debug(f"Headers: {request.headers.items()}")

        content_type = request.headers.get("content-type", "")
        upload = is_upload(request.method, content_type)
        if upload:
            logger.info("Multipart form data detected")

        body = await read_body(request, limit=MAX_UPLOAD_BYTES if upload else None)
        if body and not upload:
            logger.debug(f"Body: {len(body)} bytes")

        inbound = InboundRequest(
            method=request.method,
            path=request.url.path,
            query=request.url.query,
            headers=request.headers,
            body=body,
        )
        forwarder = self.select(inbound.method, inbound.content_type)
        return await forwarder.forward(inbound)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        # Mounted as a plain ASGI endpoint so the route matches every method
        response = await self.handle(Request(scope, receive))
        await response(scope, receive, send)

    async def close(self) -> None:
        await self.standard.close()
        await self.upload.close()
