# fulcio

Building blocks for a code-signing certificate authority that issues
short-lived certificates bound to an OIDC identity.

## Modules

### `fulcio.api_client`

This module is a client for the legacy v1 HTTP API.

- `Key(content, algorithm="")` is a public key. `Key.to_json()` base64-encodes
  `content`. It leaves out `algorithm` when that field is empty.
- `CertificateRequest(public_key, signed_email_address, certificate_signing_request)`
  is the request body. `to_json()` gives `publicKey`, `signedEmailAddress`
  and `certificateSigningRequest`. Byte fields are base64-encoded, and fields
  that are not set become `null`.
- `LegacyClient(base_url=None, *, timeout=None, user_agent="")` is the client
  object. It can be used as a context manager, which closes its HTTP session
  on exit.
  - `signing_cert(request, token)` POSTs JSON to `<base_url>/api/v1/signingCert`
    with an `Authorization: Bearer <token>` header.
    - Any status other than 201 raises `RuntimeError`.
    - An `SCT` response header that is not valid base64 raises `ValueError`.
    - A body with no PEM block also raises `ValueError`.
    - On success it returns a `CertificateResponse`. `cert_pem` holds the first
      PEM block, re-encoded. `chain_pem` holds the rest of the body. `sct`
      holds the decoded SCT.
  - `root_cert()` GETs `<base_url>/api/v1/rootCert`. It returns a
    `RootResponse(chain_pem)`. Any status other than 200 raises
    `RuntimeError` with the response body as its message.
  - `get(url)` sends a plain GET through the client's session, using its user
    agent and timeout.
  - Calling an API method when no `base_url` is set raises `ValueError`.

### `fulcio.gateway`

This module handles headers on the HTTP side of the gateway.

- `extract_oidc_token(authorization)` removes the first `"Bearer "` from an
  `Authorization` value. For example, `"Bearer token"` becomes `"token"`.
- `forward_response_headers(metadata, headers)` edits a response header
  mapping in place, using server metadata (a mapping of keys to lists of
  values):
  - It moves an `sct` metadata value into an `SCT` header.
  - It removes every header that starts with `Grpc-`.
  - It returns the integer status code from `x-http-code` metadata, or `None`
    if there is none.
  - A status code that is not an integer raises `ValueError`.

### `fulcio.serve_options`

This module holds the settings for serving the certificate authority.

- `parse_serve_args(argv=None, environ=None)` builds a `ServeOptions`. A
  setting comes from the first place that has it, in this order:
  1. a command-line flag;
  2. a `FULCIO_SERVE_<KEY>` environment variable;
  3. the config file named by `--config`/`-c`.

  `--http-host` and `--http-port` are aliases for `--host` and `--port`.
  Durations take Go-style strings such as `30s` or `1m30s`.
- `load_config_file(path)` reads a settings file and returns its keys
  lower-cased and flattened with dots. Supported extensions are json, toml,
  yaml/yml, properties/props/prop, dotenv/env and ini.
- `ServeOptions` offers these methods:
  - `validate()` checks the settings that the chosen `ca` backend requires.
    It raises `ServeConfigError` on a missing setting or an unknown backend.
    It returns a list of warnings, such as one for a deprecated
    `gcp_private_ca_version`.
  - `is_duplex()` is true when HTTP and gRPC share the same host and port.
  - `http_endpoint()` and `grpc_endpoint()` give `host:port` strings.

### `fulcio.tls_cert`

This module provides a TLS key pair that reloads itself, plus a per-request
configuration.

- `CachedTLSCert(cert_path, key_path)` loads the pair when it is created.
  - `update_certificate()` reloads the pair. On failure it raises `ValueError`
    and keeps the previous pair.
  - `certificate()` returns the current pair, with `cert_pem`, `key_pem` and
    `context`.
  - `server_context()` returns a TLS 1.3 server `ssl.SSLContext` that
    presents the current pair on every handshake.
  - `start_watching()` reloads the pair whenever the certificate file changes.
  - `close()`, or leaving a `with` block, stops watching.
- `with_config(config)` is a context manager that makes `config` the value
  of `current_config()` inside its block. Outside any block,
  `current_config()` returns `None`.

## Example

```python
from fulcio.gateway import extract_oidc_token
from fulcio.serve_options import ServeConfigError, parse_serve_args

options = parse_serve_args(["--ca", "ephemeralca"], {})
options.validate()
print(options.http_endpoint(), options.is_duplex())

print(extract_oidc_token("Bearer token"))

try:
    parse_serve_args(["--ca", "fileca"], {}).validate()
except ServeConfigError as exc:
    print(exc)
```

## What this package does not do

The package provides no command-line program. It does not run the HTTP,
gRPC or metrics servers. It does not include any certificate authority
backend, so it cannot create or sign certificates. It does not talk to HSMs
or KMS services. It prepares and checks settings for such a server, and it
acts as a client of one.