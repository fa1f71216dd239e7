"""File uploads: multipart POSTs are decoded and re-encoded before forwarding.

The upstream gets a fresh multipart body holding exactly one part, the file
sent under the ``file`` field, with its original filename.
"""

import logging
from collections.abc import AsyncGenerator

import httpx
from python_multipart.multipart import parse_options_header
from starlette.datastructures import FormData, Headers, UploadFile
from starlette.formparsers import MultiPartException, MultiPartParser
from starlette.responses import StreamingResponse

from .config import ProxyConfig
from .errors import MissingFileError, UploadFormError
from .headers import filter_request_headers
from .protocol import InboundRequest
from .proxy import HTTPForwarder

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 << 20  # 10 MiB, whole multipart body
UPLOAD_FIELD = "file"
UPLOAD_PART_CONTENT_TYPE = "application/octet-stream"

TOO_LARGE_MESSAGE = "multipart: message too large"
UNEXPECTED_EOF_MESSAGE = "multipart: NextPart: unexpected EOF"


async def _replay(body: bytes) -> AsyncGenerator[bytes, None]:
    yield body
    yield b""


def has_closing_delimiter(request: InboundRequest) -> bool:
    """True if the body carries the final `--<boundary>--` line."""
    _, params = parse_options_header(request.content_type)
    boundary = params.get(b"boundary", b"")
    return bool(boundary) and b"--" + boundary + b"--" in request.body


async def parse_upload_form(request: InboundRequest) -> FormData:
    """Parse the captured multipart body.

    Raises:
        UploadFormError: if the body is over the size cap or isn't valid multipart
    """
    if len(request.body) > MAX_UPLOAD_BYTES:
        raise UploadFormError(TOO_LARGE_MESSAGE)

    parser = MultiPartParser(
        Headers({"content-type": request.content_type}),
        _replay(request.body),
        max_part_size=MAX_UPLOAD_BYTES,
    )
    try:
        form = await parser.parse()
    except MultiPartException as e:
        raise UploadFormError(e.message) from e
    except ValueError as e:
        # python-multipart framing errors
        raise UploadFormError(str(e) or "malformed multipart body") from e

    # The parser accepts a body that stops short; parts that never ended are silently dropped
    if not has_closing_delimiter(request):
        await form.close()
        logger.warning(f"Multipart body for {request.path} ends before its closing delimiter")
        raise UploadFormError(UNEXPECTED_EOF_MESSAGE)
    return form


async def read_upload(upload: UploadFile) -> bytes:
    """Copy the uploaded file's bytes out of the parsed form."""
    try:
        await upload.seek(0)
        return await upload.read()
    except OSError as e:
        raise UploadFormError(str(e)) from e


class UploadForwarder(HTTPForwarder):
    """Forwards multipart file uploads, following upstream redirects."""

    def __init__(self, config: ProxyConfig, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(config, transport=transport)
        self.follow_redirects = config.follow_upload_redirects

    async def forward(self, request: InboundRequest) -> StreamingResponse:
        form = await parse_upload_form(request)
        try:
            upload = next(
                (item for item in form.getlist(UPLOAD_FIELD) if isinstance(item, UploadFile)),
                None,
            )
            if upload is None:
                logger.warning(f"Upload to {request.path} has no '{UPLOAD_FIELD}' file part")
                raise MissingFileError("http: no such file")

            filename = upload.filename or ""
            data = await read_upload(upload)
        finally:
            await form.close()

        logger.info(f"Forwarding upload '{filename}' ({len(data)} bytes)")

        # No path normalization and no query string for uploads
        url = f"{self.config.target_base}{request.path}"

        # httpx writes the new multipart Content-Type and Content-Length
        headers = filter_request_headers(request.headers.items())
        headers.pop("content-type", None)

        outbound = await self.build_request(
            request.method,
            url,
            headers=headers,
            files={UPLOAD_FIELD: (filename, data, UPLOAD_PART_CONTENT_TYPE)},
        )
        logger.debug(
            f"Re-encoded upload: Content-Type={outbound.headers.get('content-type')}, "
            f"Content-Length={outbound.headers.get('content-length')}"
        )

        upstream = await self.send(outbound)
        return await self.relay(upstream)
