"""Code-signing certificate authority helpers: legacy API client, gateway headers, serve settings, reloadable TLS."""

__version__ = "0.1.0"

__all__ = ["api_client", "gateway", "serve_options", "tls_cert"]