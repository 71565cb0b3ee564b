"""Settings for the ``serve`` command: flags, environment and config file."""

from __future__ import annotations

import argparse
import configparser
import json
import logging
import os
import re
import sys
import tomllib
from collections.abc import Mapping, Sequence
from dataclasses import Field, dataclass, field, fields
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

SERVE_ENV_PREFIX = "FULCIO_SERVE"
LEGACY_UNIX_DOMAIN_SOCKET = "@fulcio-legacy-grpc-socket"
MAX_MSG_SIZE = 1 << 22  # 4MiB

SUPPORTED_EXTENSIONS = (
    "json",
    "toml",
    "yaml",
    "yml",
    "properties",
    "props",
    "prop",
    "dotenv",
    "env",
    "ini",
)

_EMPTY = ""
_DECRYPT_HELP = "Password to decrypt CA private key"
_FLAG_ALIASES = {"host": ("--http-host",), "port": ("--http-port",)}
_INI_ROOT_SECTION = "__root__"
_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


class ServeConfigError(ValueError):
    """Raised when the serve settings are missing, malformed or inconsistent."""


def _opt(default: Any, key: str | None, help_text: str, *, flag: bool = True, short: str = "") -> Any:
    """Declare a setting; a key of None is derived from the field name."""
    return field(
        default=default,
        metadata={"key": key, "help": help_text, "flag": flag, "short": short},
    )


def _key_of(spec: Field[Any]) -> str:
    return spec.metadata.get("key") or spec.name.replace("_", "-")


@dataclass
class ServeOptions:
    """Resolved settings for starting the certificate authority servers."""

    config: str = _opt("", "config", "config file containing all settings", short="-c")
    log_type: str = _opt("dev", "log_type", "logger type to use (dev/prod)")
    ca: str = _opt("", "ca", "googleca | tinkca | pkcs11ca | fileca | kmsca | ephemeralca (for testing)")
    aws_hsm_root_ca_path: str = _opt(
        "", "aws-hsm-root-ca-path", "Path to root CA on disk (only used with AWS HSM)"
    )
    gcp_private_ca_parent: str = _opt(
        "",
        "gcp_private_ca_parent",
        "private ca parent: projects/<project>/locations/<location>/caPools/<caPool> "
        "(only used with --ca googleca)",
    )
    gcp_private_ca_version: str = _opt(
        "", "gcp_private_ca_version", "deprecated", flag=False
    )
    hsm_caroot_id: str = _opt("", "hsm-caroot-id", "HSM ID for Root CA (only used with --ca pkcs11ca)")
    ct_log_url: str = _opt(
        "http://localhost:6962/test",
        "ct-log-url",
        "host and path (with log prefix at the end) to the ct log",
    )
    ct_log_public_key_path: str = _opt(
        "", "ct-log-public-key-path", "Path to a PEM-encoded public key of the CT log, used to verify SCTs"
    )
    config_path: str = _opt(
        "/etc/fulcio-config/config.json", "config-path", "path to fulcio config json"
    )
    pkcs11_config_path: str = _opt(
        "config/crypto11.conf", "pkcs11-config-path", "path to fulcio pkcs11 config file"
    )
    fileca_cert: str = _opt("", "fileca-cert", "Path to CA certificate")
    fileca_key: str = _opt("", "fileca-key", "Path to CA encrypted private key")
    fileca_key_passwd: str = _opt(_EMPTY, None, _DECRYPT_HELP)
    fileca_watch: bool = _opt(True, "fileca-watch", "Watch filesystem for updates")
    kms_resource: str = _opt(
        "",
        "kms-resource",
        "KMS key resource path. Must be prefixed with awskms://, azurekms://, gcpkms://, or hashivault://",
    )
    kms_cert_chain_path: str = _opt(
        "", "kms-cert-chain-path", "Path to PEM-encoded CA certificate chain for KMS-backed CA"
    )
    tink_kms_resource: str = _opt(
        "",
        "tink-kms-resource",
        "KMS key resource path for encrypted Tink keyset. Must be prefixed with gcp-kms:// or aws-kms://",
    )
    tink_cert_chain_path: str = _opt(
        "", "tink-cert-chain-path", "Path to PEM-encoded CA certificate chain for Tink-backed CA"
    )
    tink_keyset_path: str = _opt(
        "", "tink-keyset-path", "Path to KMS-encrypted keyset for Tink-backed CA"
    )
    host: str = _opt("0.0.0.0", "host", "The host on which to serve requests for HTTP; --http-host is alias")
    port: str = _opt("8080", "port", "The port on which to serve requests for HTTP; --http-port is alias")
    grpc_host: str = _opt("0.0.0.0", "grpc-host", "The host on which to serve requests for GRPC")
    grpc_port: str = _opt("8081", "grpc-port", "The port on which to serve requests for GRPC")
    metrics_port: str = _opt(
        "2112", "metrics-port", "The port on which to serve prometheus metrics endpoint"
    )
    legacy_unix_domain_socket: str = _opt(
        LEGACY_UNIX_DOMAIN_SOCKET,
        "legacy-unix-domain-socket",
        "The Unix domain socket used for the legacy gRPC server",
    )
    read_header_timeout: timedelta = _opt(
        timedelta(seconds=10),
        "read-header-timeout",
        "The time allowed to read the headers of the requests in seconds",
    )
    grpc_tls_certificate: str = _opt(
        "",
        "grpc-tls-certificate",
        "the certificate file to use for secure connections - only applies to grpc-port",
    )
    grpc_tls_key: str = _opt(
        "",
        "grpc-tls-key",
        "the private key file to use for secure connections (without passphrase) - only applies to grpc-port",
    )
    idle_connection_timeout: timedelta = _opt(
        timedelta(seconds=30),
        "idle-connection-timeout",
        "The time allowed for connections (HTTP or gRPC) to go idle before being closed by the server",
    )
    explicitly_set: frozenset[str] = field(default_factory=frozenset, compare=False)

    def _is_set(self, key: str) -> bool:
        return key in self.explicitly_set

    def validate(self) -> list[str]:
        """Check the settings needed by the selected CA; return any warnings."""
        warnings: list[str] = []
        ca = self.ca
        if ca == "":
            raise ServeConfigError('required flag "ca" not set')

        requirements: dict[str, list[tuple[str, str]]] = {
            "pkcs11ca": [("hsm-caroot-id", "hsm-caroot-id must be set when using pkcs11ca")],
            "googleca": [
                ("gcp_private_ca_parent", "gcp_private_ca_parent must be set when using googleca"),
            ],
            "fileca": [
                ("fileca-cert", "fileca-cert must be set to certificate path when using fileca"),
                ("fileca-key", "fileca-key must be set to private key path when using fileca"),
                (
                    "fileca-key-passwd",
                    "fileca-key-passwd must be set to encryption password for private key file when using fileca",
                ),
            ],
            "kmsca": [
                ("kms-resource", "kms-resource must be set when using kmsca"),
                ("kms-cert-chain-path", "kms-cert-chain-path must be set when using kmsca"),
            ],
            "tinkca": [
                ("tink-kms-resource", "tink-kms-resource must be set when using tinkca"),
                ("tink-cert-chain-path", "tink-cert-chain-path must be set when using tinkca"),
                ("tink-keyset-path", "tink-keyset-path must be set when using tinkca"),
            ],
            # A self-signed in-memory CA for testing needs nothing more.
            "ephemeralca": [],
        }
        if ca not in requirements:
            raise ServeConfigError(
                f"--ca={ca} is not a valid selection. Try: pkcs11ca, googleca, fileca, or ephemeralca"
            )
        for key, message in requirements[ca]:
            if not self._is_set(key):
                raise ServeConfigError(message)

        if ca == "googleca" and self._is_set("gcp_private_ca_version"):
            warning = "gcp_private_ca_version is deprecated and will soon be removed; please remove it"
            logger.warning(warning)
            warnings.append(warning)
        return warnings

    def is_duplex(self) -> bool:
        """True when HTTP and gRPC share one host and port."""
        return self.port == self.grpc_port and self.host == self.grpc_host

    def http_endpoint(self) -> str:
        """Address the HTTP gateway listens on."""
        return f"{self.host}:{self.port}"

    def grpc_endpoint(self) -> str:
        """Address the gRPC server listens on."""
        return f"{self.grpc_host}:{self.grpc_port}"


def _parse_go_duration(text: str) -> timedelta:
    if not text:
        raise ValueError(f'time: invalid duration "{text}"')
    body = text
    sign = 1
    if body[0] in "+-":
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if body == "0":
        return timedelta(0)
    if not body:
        raise ValueError(f'time: invalid duration "{text}"')
    total = 0.0
    pos = 0
    while pos < len(body):
        match = _DURATION_PART.match(body, pos)
        if match is None:
            raise ValueError(f'time: invalid duration "{text}"')
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    return timedelta(seconds=sign * total)


def _as_duration(value: Any, key: str) -> timedelta:
    if isinstance(value, timedelta):
        return value
    try:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return timedelta(microseconds=value / 1000)
        if isinstance(value, str):
            text = value.strip()
            if not any(ch in "nsuµmh" for ch in text):
                text += "ns"
            return _parse_go_duration(text)
    except ValueError as exc:
        raise ServeConfigError(f"invalid duration for {key}: {exc}") from exc
    raise ServeConfigError(f"invalid duration for {key}: {value!r}")


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        if value in _TRUE_WORDS:
            return True
        if value in _FALSE_WORDS:
            return False
    raise ServeConfigError(f"invalid boolean for {key}: {value!r}")


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _flatten(data: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for name, value in data.items():
        key = f"{prefix}{str(name).lower()}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, key + "."))
        else:
            flat[key] = value
    return flat


def _parse_key_values(text: str, *, dotenv: bool) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or (not dotenv and line.startswith("!")):
            continue
        if dotenv and line.startswith("export "):
            line = line[len("export "):].lstrip()
        separators = "=" if dotenv else "=:"
        positions = [line.find(sep) for sep in separators if sep in line]
        if not positions:
            if dotenv:
                raise ValueError(f"malformed line: {raw!r}")
            result[line] = ""
            continue
        cut = min(positions)
        name, value = line[:cut].strip(), line[cut + 1:].strip()
        if dotenv and len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        result[name] = value
    return result


def _parse_ini(text: str) -> dict[str, Any]:
    parser = configparser.ConfigParser(interpolation=None, default_section=_INI_ROOT_SECTION)
    parser.read_string(f"[{_INI_ROOT_SECTION}]\n" + text)
    result: dict[str, Any] = dict(parser.defaults())
    for section in parser.sections():
        for name, value in parser.items(section, raw=True):
            if name in parser.defaults():
                continue
            result[f"{section}.{name}"] = value
    return result


def load_config_file(path: str | os.PathLike[str]) -> dict[str, Any]:
    """Read a settings file; return its keys, lower-cased and flattened with dots."""
    file_path = Path(path)
    try:
        file_path.stat()
    except OSError as exc:
        raise ServeConfigError(f"unable to stat config file provided: {exc}") from exc

    ext = file_path.suffix.removeprefix(".")
    if ext not in SUPPORTED_EXTENSIONS:
        raise ServeConfigError(
            "config file must have one of the following extensions: "
            + ", ".join(SUPPORTED_EXTENSIONS)
        )

    try:
        text = file_path.read_text(encoding="utf-8")
        if ext == "json":
            data = json.loads(text) if text.strip() else {}
        elif ext in ("yaml", "yml"):
            data = yaml.safe_load(text) or {}
        elif ext == "toml":
            data = tomllib.loads(text)
        elif ext in ("properties", "props", "prop"):
            data = _parse_key_values(text, dotenv=False)
        elif ext in ("dotenv", "env"):
            data = _parse_key_values(text, dotenv=True)
        else:
            data = _parse_ini(text)
        if not isinstance(data, Mapping):
            raise ValueError("top level is not a mapping")
    except (OSError, ValueError, yaml.YAMLError, configparser.Error) as exc:
        raise ServeConfigError(f"unable to parse config file provided: {exc}") from exc
    return _flatten(data)


class _FlagParser(argparse.ArgumentParser):
    def error(self, message: str) -> Any:  # type: ignore[override]
        raise ServeConfigError(message)


def _build_parser() -> _FlagParser:
    parser = _FlagParser(
        prog="serve",
        description="Starts a http server and serves the configured api",
        argument_default=argparse.SUPPRESS,
    )
    for spec in fields(ServeOptions):
        meta = spec.metadata
        if not meta.get("flag"):
            continue
        key = _key_of(spec)
        names = [f"--{key}", *_FLAG_ALIASES.get(key, ())]
        if meta["short"]:
            names.insert(0, meta["short"])
        if isinstance(spec.default, bool):
            parser.add_argument(*names, dest=key, nargs="?", const="true", help=meta["help"])
        else:
            parser.add_argument(*names, dest=key, help=meta["help"])
    return parser


def parse_serve_args(
    argv: Sequence[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ServeOptions:
    """Resolve settings: flags win over environment, which wins over the config file."""
    if argv is None:
        argv = sys.argv[1:]
    if environ is None:
        environ = os.environ

    flags = vars(_build_parser().parse_args(list(argv)))
    file_values: dict[str, Any] = {}
    config_file = flags.get("config", "")
    if config_file:
        file_values = load_config_file(config_file)

    values: dict[str, Any] = {}
    explicitly_set: set[str] = set()
    for spec in fields(ServeOptions):
        if "key" not in spec.metadata:
            continue
        key = _key_of(spec)
        env_name = f"{SERVE_ENV_PREFIX}_{key}".upper()
        if key in flags:
            raw = flags[key]
        elif env_name in environ:
            raw = environ[env_name]
        elif key in file_values:
            raw = file_values[key]
        else:
            continue
        explicitly_set.add(key)
        if isinstance(spec.default, bool):
            values[spec.name] = _as_bool(raw, key)
        elif isinstance(spec.default, timedelta):
            values[spec.name] = _as_duration(raw, key)
        else:
            values[spec.name] = _as_str(raw)

    return ServeOptions(**values, explicitly_set=frozenset(explicitly_set))