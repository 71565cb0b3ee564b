"""Hot-reloadable TLS key pair for the gRPC server, and per-request config."""

from __future__ import annotations

import contextlib
import contextvars
import logging
import os
import ssl
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

_RELOAD_EVENTS = frozenset({"modified", "created", "moved", "closed"})

_CURRENT_CONFIG: contextvars.ContextVar[Any] = contextvars.ContextVar(
    "fulcio_config", default=None
)


def _new_server_context() -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_3
    return context


def _same_file(a: str, b: str) -> bool:
    return os.path.realpath(a) == os.path.realpath(b)


@dataclass(frozen=True)
class _KeyPair:
    """A loaded certificate and key, with a server context that presents them."""

    cert_pem: bytes
    key_pem: bytes
    context: ssl.SSLContext


class _CertFileHandler(FileSystemEventHandler):
    def __init__(self, owner: CachedTLSCert) -> None:
        super().__init__()
        self._owner = owner

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _RELOAD_EVENTS:
            return
        path = event.dest_path if event.event_type == "moved" else event.src_path
        if not path or not _same_file(os.fsdecode(path), self._owner.cert_path):
            return
        logger.info("grpc-tls-certificate write event detected")
        try:
            self._owner.update_certificate()
        except ValueError as exc:
            logger.error("%s", exc)


class CachedTLSCert:
    """A certificate and key loaded from disk, reloaded when the certificate changes."""

    def __init__(self, cert_path: str | os.PathLike[str], key_path: str | os.PathLike[str]) -> None:
        self.cert_path = os.path.abspath(os.fspath(cert_path))
        self.key_path = os.path.abspath(os.fspath(key_path))
        self._lock = threading.Lock()
        self._pair: _KeyPair | None = None
        self._observer: Any = None
        self.update_certificate()

    def __enter__(self) -> CachedTLSCert:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def update_certificate(self) -> None:
        """Reload the key pair from disk; the previous pair stays on failure.

        Raises ValueError if the files cannot be read or do not form a key pair.
        """
        with self._lock:
            try:
                with open(self.cert_path, "rb") as cert_file:
                    cert_pem = cert_file.read()
                with open(self.key_path, "rb") as key_file:
                    key_pem = key_file.read()
                context = _new_server_context()
                context.load_cert_chain(self.cert_path, self.key_path)
            except OSError as exc:
                raise ValueError(f"loading GRPC tls certificate and key file: {exc}") from exc
            self._pair = _KeyPair(cert_pem=cert_pem, key_pem=key_pem, context=context)

    def certificate(self) -> _KeyPair:
        """The key pair most recently loaded."""
        with self._lock:
            assert self._pair is not None
            return self._pair

    def server_context(self) -> ssl.SSLContext:
        """A TLS 1.3 server context that presents the current pair on every handshake."""
        context = _new_server_context()
        context.load_cert_chain(self.cert_path, self.key_path)

        def _select(sock: Any, _server_name: str | None, _ctx: ssl.SSLContext) -> None:
            sock.context = self.certificate().context

        context.sni_callback = _select
        return context

    def start_watching(self) -> None:
        """Watch the certificate file and reload the pair whenever it is written."""
        if self._observer is not None:
            return
        observer = Observer()
        observer.schedule(
            _CertFileHandler(self), os.path.dirname(self.cert_path), recursive=False
        )
        observer.daemon = True
        observer.start()
        self._observer = observer

    def close(self) -> None:
        """Stop watching the certificate file."""
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join()


@contextlib.contextmanager
def with_config(config: Any) -> Iterator[Any]:
    """Make ``config`` the current configuration for the enclosed block."""
    token = _CURRENT_CONFIG.set(config)
    try:
        yield config
    finally:
        _CURRENT_CONFIG.reset(token)


def current_config() -> Any:
    """The configuration set by the innermost ``with_config``, or None."""
    return _CURRENT_CONFIG.get()