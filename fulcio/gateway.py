"""Translation between HTTP requests/responses and RPC metadata."""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping, Sequence

SCT_METADATA_KEY = "sct"
HTTP_RESPONSE_CODE_METADATA_KEY = "x-http-code"
GRPC_HEADER_PREFIX = "Grpc-"
SCT_GRPC_HEADER = "Grpc-Metadata-sct"
SCT_HEADER = "SCT"


def extract_oidc_token(authorization: str) -> str:
    """Return the OIDC token carried in an Authorization header value."""
    return authorization.replace("Bearer ", "", 1)


def _pop_metadata(metadata: MutableMapping[str, Sequence[str]], key: str) -> str | None:
    """Remove ``key`` (case-insensitively) and return its first value, if any."""
    for name in list(metadata):
        if name.lower() == key:
            values = metadata[name]
            if values:
                del metadata[name]
                return values[0]
    return None


def forward_response_headers(
    metadata: MutableMapping[str, Sequence[str]] | None,
    headers: MutableMapping[str, str],
) -> int | None:
    """Rewrite response headers from server metadata.

    Moves the SCT into an ``SCT`` header, strips every ``Grpc-`` header and
    returns the HTTP status code requested by the server, or None.
    Raises ValueError if the requested status code is not an integer.
    """
    if metadata is None:
        return None

    sct = _pop_metadata(metadata, SCT_METADATA_KEY)
    if sct is not None:
        headers.pop(SCT_GRPC_HEADER, None)
        headers[SCT_HEADER] = sct

    for name in [n for n in headers if n.startswith(GRPC_HEADER_PREFIX)]:
        del headers[name]

    code = _pop_metadata(metadata, HTTP_RESPONSE_CODE_METADATA_KEY)
    if code is None:
        return None
    return int(code)


__all__: Mapping[str, object] | list[str] = [
    "extract_oidc_token",
    "forward_response_headers",
    "SCT_METADATA_KEY",
    "HTTP_RESPONSE_CODE_METADATA_KEY",
]