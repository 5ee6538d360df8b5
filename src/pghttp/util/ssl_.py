import os
import socket
import ssl
from typing import Optional

from ..exceptions import SSLError


def resolve_cert_reqs(candidate: Optional[int]) -> ssl.VerifyMode:
    """
    Resolves the argument to a :class:`ssl.VerifyMode`, which can be passed
    to the wrap_socket function/method from the ssl module.
    Defaults to :data:`ssl.CERT_REQUIRED`.
    """
    if candidate is None:
        return ssl.CERT_REQUIRED

    return ssl.VerifyMode(candidate)


def create_pghttp_context(
    cert_reqs: Optional[int] = None,
    check_hostname: bool = True,
    ca_certs: Optional[str] = None,
    certfile: Optional[str] = None,
    keyfile: Optional[str] = None,
    key_password: Optional[str] = None,
) -> ssl.SSLContext:
    """
    Build the client context for one TLS connection.

    :param cert_reqs:
        Whether to require the certificate verification. This defaults to
        ``ssl.CERT_REQUIRED``.
    :param check_hostname:
        Whether the server certificate must match the host name. Only
        meaningful while the certificate is verified at all.
    :param ca_certs:
        Path to a CA bundle; the system store is used when not given.
    :param certfile:
        Client certificate, optionally with the private key appended.
    :param keyfile:
        Client private key when it is not part of ``certfile``.
    :param key_password:
        Password for an encrypted ``keyfile``.
    :raises SSLError:
        if the CA bundle or client certificate cannot be loaded.
    """
    cert_reqs = resolve_cert_reqs(cert_reqs)

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.options |= ssl.OP_NO_COMPRESSION

    # The order of the below lines setting verify_mode and check_hostname
    # matter due to safe-guards SSLContext has to prevent an SSLContext with
    # check_hostname=True, verify_mode=NONE/OPTIONAL.
    if cert_reqs == ssl.CERT_REQUIRED:
        context.verify_mode = cert_reqs
        context.check_hostname = check_hostname
    else:
        context.check_hostname = False
        context.verify_mode = cert_reqs

    try:
        context.hostname_checks_common_name = False
    except AttributeError:
        pass

    try:
        if ca_certs:
            context.load_verify_locations(ca_certs)
        elif cert_reqs != ssl.CERT_NONE:
            context.load_default_certs()

        if certfile:
            context.load_cert_chain(certfile, keyfile, key_password)
    except (OSError, ssl.SSLError) as e:
        raise SSLError(e) from e

    # Enable logging of TLS session keys via defacto standard environment variable
    # 'SSLKEYLOGFILE', if the feature is available (Python 3.8+). Skip empty values.
    if hasattr(context, "keylog_filename"):
        sslkeylogfile = os.environ.get("SSLKEYLOGFILE")
        if sslkeylogfile:
            context.keylog_filename = sslkeylogfile

    return context


def ssl_wrap_socket(
    sock: socket.socket,
    ssl_context: ssl.SSLContext,
    server_hostname: Optional[str] = None,
) -> ssl.SSLSocket:
    """Wrap ``sock`` and complete the handshake, sending SNI when there is a host name."""
    try:
        return ssl_context.wrap_socket(sock, server_hostname=server_hostname)
    except ssl.SSLError as e:
        raise SSLError(e) from e
