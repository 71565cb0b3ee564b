"""Client for the legacy v1 certificate-issuing HTTP API."""

from __future__ import annotations

import base64
import binascii
import json
import posixpath
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import requests

SIGNING_CERT_PATH = "/api/v1/signingCert"
ROOT_CERT_PATH = "/api/v1/rootCert"

_PEM_BEGIN = re.compile(rb"(?m)^-----BEGIN ([^\r\n]*?)-----[ \t]*\r?\n")
_PEM_LINE_LENGTH = 64


def _b64_or_none(data: bytes | None) -> str | None:
    return None if data is None else base64.b64encode(data).decode("ascii")


def _decode_first_pem(data: bytes) -> tuple[bytes, bytes, bytes] | None:
    """Find the first well-formed PEM block; return (label, der, rest)."""
    pos = 0
    while match := _PEM_BEGIN.search(data, pos):
        label = match.group(1)
        end_marker = b"-----END " + label + b"-----"
        end = data.find(end_marker, match.end())
        if end < 0:
            return None
        body = data[match.end():end]
        try:
            der = base64.b64decode(b"".join(body.split()), validate=True)
        except (binascii.Error, ValueError):
            pos = match.end()
            continue
        after = end + len(end_marker)
        newline = data.find(b"\n", after)
        rest = b"" if newline < 0 else data[newline + 1:]
        return label, der, rest
    return None


def _encode_pem(label: bytes, der: bytes) -> bytes:
    encoded = base64.b64encode(der)
    lines = [encoded[i:i + _PEM_LINE_LENGTH] for i in range(0, len(encoded), _PEM_LINE_LENGTH)]
    parts = [b"-----BEGIN " + label + b"-----", *lines, b"-----END " + label + b"-----"]
    return b"\n".join(parts) + b"\n"


@dataclass
class Key:
    """A public key as sent in a certificate request."""

    content: bytes
    algorithm: str = ""

    def to_json(self) -> dict[str, Any]:
        """Return the JSON object for this key; an empty algorithm is omitted."""
        result: dict[str, Any] = {"content": base64.b64encode(self.content).decode("ascii")}
        if self.algorithm:
            result["algorithm"] = self.algorithm
        return result


@dataclass
class CertificateRequest:
    """Body of a request to the signing certificate endpoint."""

    public_key: Key = field(default_factory=lambda: Key(b""))
    signed_email_address: bytes | None = None
    certificate_signing_request: bytes | None = None

    def to_json(self) -> dict[str, Any]:
        """Return the JSON object for this request, binary fields base64 encoded."""
        return {
            "publicKey": self.public_key.to_json(),
            "signedEmailAddress": _b64_or_none(self.signed_email_address),
            "certificateSigningRequest": _b64_or_none(self.certificate_signing_request),
        }


@dataclass(frozen=True)
class CertificateResponse:
    """An issued certificate, the rest of its chain and its SCT."""

    cert_pem: bytes
    chain_pem: bytes
    sct: bytes


@dataclass(frozen=True)
class RootResponse:
    """The CA chain currently in use by the server."""

    chain_pem: bytes


class LegacyClient:
    """Talks to the v1 API of a certificate authority at ``base_url``."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        user_agent: str = "",
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout or None
        self._session = requests.Session()
        if user_agent:
            self._session.headers["User-Agent"] = user_agent

    def __enter__(self) -> LegacyClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._session.close()

    def _endpoint(self, suffix: str) -> str:
        if self.base_url is None:
            raise ValueError("no base URL configured")
        parts = urlsplit(self.base_url)
        path = posixpath.normpath(parts.path.rstrip("/") + suffix)
        return urlunsplit(parts._replace(path=path))

    def get(self, url: str) -> requests.Response:
        """Issue a plain GET with this client's user agent and timeout."""
        return self._session.get(url, timeout=self.timeout)

    def signing_cert(self, request: CertificateRequest, token: str) -> CertificateResponse:
        """Request a signing certificate, authenticated with an OIDC bearer token."""
        url = self._endpoint(SIGNING_CERT_PATH)
        body = json.dumps(request.to_json(), separators=(",", ":")).encode("utf-8")
        response = self._session.post(
            url,
            data=body,
            headers={
                "Authorization": "Bearer " + token,
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )
        content = response.content
        if response.status_code != 201:
            raise RuntimeError(
                f"POST {url} returned {response.status_code} {response.reason}: {content!r}"
            )

        try:
            sct = base64.b64decode(response.headers.get("SCT", ""), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"decode: {exc}") from exc

        decoded = _decode_first_pem(content)
        if decoded is None:
            raise ValueError("did not find a cert from Fulcio")
        label, der, chain_pem = decoded
        return CertificateResponse(
            cert_pem=_encode_pem(label, der),
            chain_pem=chain_pem,
            sct=sct,
        )

    def root_cert(self) -> RootResponse:
        """Fetch the CA chain currently used by the server."""
        url = self._endpoint(ROOT_CERT_PATH)
        response = self._session.get(url, timeout=self.timeout)
        if response.status_code != 200:
            raise RuntimeError(response.content.decode("utf-8", errors="replace"))
        return RootResponse(chain_pem=response.content)