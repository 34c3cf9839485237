"""Server TLS configuration from certificate and key files."""

from __future__ import annotations

import ssl
import warnings


def tls_version_range(
    min_version: float, max_version: float
) -> tuple[ssl.TLSVersion, ssl.TLSVersion]:
    """Map configured version numbers such as 1.2 to TLS versions.

    Unknown values leave the defaults: TLS 1.0 as minimum, TLS 1.3 as maximum.
    """
    minimum = {
        1.1: ssl.TLSVersion.TLSv1_1,
        1.2: ssl.TLSVersion.TLSv1_2,
        1.3: ssl.TLSVersion.TLSv1_3,
    }.get(min_version, ssl.TLSVersion.TLSv1)

    maximum = {
        1.0: ssl.TLSVersion.TLSv1,
        1.1: ssl.TLSVersion.TLSv1_1,
        1.2: ssl.TLSVersion.TLSv1_2,
    }.get(max_version, ssl.TLSVersion.TLSv1_3)

    return minimum, maximum


def new_tls_config(
    cert_path: str, key_path: str, min_version: float = 0.0, max_version: float = 0.0
) -> ssl.SSLContext:
    """Return a server TLS context with the PEM certificate chain and key.

    Raises OSError when the key pair cannot be loaded.
    """
    minimum, maximum = tls_version_range(min_version, max_version)

    ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", DeprecationWarning)
        ctx.minimum_version = minimum
        ctx.maximum_version = maximum

    try:
        ctx.load_cert_chain(certfile=cert_path, keyfile=key_path)
    except OSError as exc:
        raise OSError(f"loading TLS cert: {exc}") from exc

    return ctx