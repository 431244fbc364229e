"""
Network utilities for keepwire.

This module provides helpers for SSL context setup, host header
formatting and the destination keys used to bucket pooled connections.
"""

import socket
import ssl
from typing import Optional


DEFAULT_PORTS = {"http": 80, "https": 443}


def create_ssl_context(
    reject_unauthorized: bool = True,
    ciphers: Optional[str] = None,
    secure_protocol: Optional[str] = None,
) -> ssl.SSLContext:
    """
    Create an SSL context for outbound connections.

    Args:
        reject_unauthorized: Verify the peer certificate and hostname
        ciphers: Optional OpenSSL cipher list overriding the defaults
        secure_protocol: Optional ``ssl.TLSVersion`` member name (e.g.
                         ``"TLSv1_2"``) pinning the negotiated version

    Returns:
        Configured SSL context

    Raises:
        ValueError: If ``secure_protocol`` is not a known TLS version
        ssl.SSLError: If the cipher list is rejected
    """
    context = ssl.create_default_context()
    if not reject_unauthorized:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    context.options |= ssl.OP_NO_COMPRESSION
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    if secure_protocol is not None:
        try:
            version = ssl.TLSVersion[secure_protocol]
        except KeyError:
            raise ValueError(f"Unknown secure protocol: {secure_protocol}") from None
        context.minimum_version = version
        context.maximum_version = version

    if ciphers:
        context.set_ciphers(ciphers)

    return context


def is_ipv6_address(host: str) -> bool:
    """Check if a host string is an IPv6 address."""
    try:
        socket.inet_pton(socket.AF_INET6, host)
        return True
    except OSError:
        return False


def format_host_header(host: str, port: int, scheme: str) -> str:
    """
    Format the Host header for a request.

    The port is omitted when it is the default for the scheme.
    """
    if is_ipv6_address(host):
        host = f"[{host}]"
    if DEFAULT_PORTS.get(scheme) == port:
        return host
    return f"{host}:{port}"


def normalize_host(host: str) -> str:
    """Normalize hostname for consistent comparison."""
    return host.rstrip(".").lower()


def build_destination_key(
    host: str,
    port: int,
    local_address: Optional[str] = None,
    socket_path: Optional[str] = None,
) -> str:
    """
    Build the identity used to bucket pooled connections.

    Requests with equal keys may share a connection; different keys never do.
    """
    if socket_path:
        return f"unix:{socket_path}"
    key = f"{normalize_host(host)}:{port}"
    if local_address:
        key = f"{key}:{local_address}"
    return key
