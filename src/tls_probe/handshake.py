from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence
import dataclasses
import ipaddress
import logging
import select
import socket
import re
from urllib.parse import urlparse

from OpenSSL import SSL

from .names_and_numbers import CipherSuite, Protocol

logger = logging.getLogger(__name__)

# Default socket connection timeout, in seconds.
DEFAULT_TIMEOUT: float = 2

class ScanError(Exception):
    """ Base error class for errors that occur during scanning. """
    pass

class ConnectionError(ScanError):
    """ Class for error in resolving or connecting to a server. """
    pass

class ProxyError(ConnectionError):
    """ Class for errors in connecting through a proxy. """
    pass

class HandshakeError(ScanError):
    """ Error for handshakes rejected by either side, with the reasons reported by OpenSSL. """
    def __init__(self, message: str, reasons: Sequence[str] = ()):
        super().__init__(message)
        self.reasons = list(reasons)

class ClientConfigurationError(ScanError):
    """ Error for constraints the local OpenSSL build can't offer, such as a disabled cipher suite. """
    pass

class UnexpectedNegotiationError(ScanError):
    """ Error for handshakes that negotiated something other than what was pinned. """
    pass

@dataclasses.dataclass
class ConnectionSettings:
    """
    Settings for a connection to a server, including the host, port, and proxy.
    """
    host: str
    port: int = 443
    proxy: Optional[str] = None
    timeout_in_seconds: Optional[float] = DEFAULT_TIMEOUT

@dataclasses.dataclass(frozen=True)
class HandshakeSettings:
    """
    Constraints for a single handshake. Certificates are never validated.
    `cipher_suites=None` offers every cipher suite the local OpenSSL supports.
    """
    min_protocol: Protocol
    max_protocol: Protocol
    cipher_suites: Optional[Sequence[CipherSuite]] = None

@dataclasses.dataclass
class NegotiatedSession:
    """
    What the server picked. The enum fields are None when the value is not in our tables.
    """
    protocol: Optional[Protocol]
    cipher_suite: Optional[CipherSuite]
    protocol_name: str
    cipher_name: Optional[str]

def parse_target(target:str, default_port:int = 443) -> tuple[str, int]:
    """
    Parses the target string into a host and port, stripping protocol and path.
    """
    if not re.match(r'\w+://', target):
        # Without a scheme, urlparse will treat the target as a path.
        # Prefix // to make it a netloc.
        url = urlparse('//' + target)
    else:
        url = urlparse(target, scheme='https')
    host = url.hostname or 'localhost'
    port = url.port if url.port else default_port
    return host, port

def _connect_through_proxy(sock: socket.socket, settings: ConnectionSettings, proxy_host: str) -> None:
    """
    Asks an HTTP proxy to tunnel `sock` to the target server, and consumes the proxy's response headers.
    """
    sock.send(f"CONNECT {settings.host}:{settings.port} HTTP/1.1\r\nhost:{proxy_host}\r\n\r\n".encode('utf-8'))
    with sock.makefile('rb') as sock_file:
        def read_line() -> str:
            line = sock_file.readline()
            if not line:
                raise ProxyError("Proxy closed the connection before establishing the tunnel")
            # Proxies are not required to send ASCII, and garbage shouldn't abort a scan.
            return line.decode('utf-8', errors='replace')

        line = read_line()
        if not re.fullmatch(r'HTTP/1\.[01] 200 Connection [Ee]stablished\r\n', line):
            raise ProxyError("Proxy refused the connection: ", line)
        while read_line() != '\r\n':
            pass

def make_socket(settings: ConnectionSettings) -> socket.socket:
    """
    Creates and connects a socket to the target server, through the chosen proxy if any.
    """
    socket_host, socket_port = None, None # To appease the type checker.
    try:
        if not settings.proxy:
            socket_host, socket_port = settings.host, settings.port
            return socket.create_connection((socket_host, socket_port), timeout=settings.timeout_in_seconds)

        if not settings.proxy.startswith('http://'):
            raise ProxyError("Only HTTP proxies are supported at the moment.", settings.proxy)

        socket_host, socket_port = parse_target(settings.proxy, 80)

        sock = socket.create_connection((socket_host, socket_port), timeout=settings.timeout_in_seconds)
        try:
            _connect_through_proxy(sock, settings, socket_host)
        except BaseException:
            sock.close()
            raise
        return sock
    except TimeoutError as e:
        raise ConnectionError(f"Connection to {socket_host}:{socket_port} timed out after {settings.timeout_in_seconds} seconds") from e
    except socket.gaierror as e:
        raise ConnectionError(f"Could not resolve host {socket_host}") from e
    except socket.error as e:
        raise ConnectionError(f"Could not connect to {socket_host}:{socket_port}") from e

def _openssl_reasons(error: SSL.Error) -> List[str]:
    """
    Extracts the reason strings from an OpenSSL error queue, e.g. ['sslv3 alert handshake failure'].
    """
    if error.args and isinstance(error.args[0], list):
        return [entry[-1] for entry in error.args[0] if isinstance(entry, tuple) and entry]
    return [str(error)]

def make_context(handshake_settings: HandshakeSettings) -> SSL.Context:
    """
    Creates an OpenSSL context that can only negotiate within the given constraints.
    """
    context = SSL.Context(SSL.TLS_CLIENT_METHOD)
    context.set_min_proto_version(handshake_settings.min_protocol.code)
    context.set_max_proto_version(handshake_settings.max_protocol.code)
    # We're probing what the server negotiates, not whether we trust it.
    context.set_verify(SSL.VERIFY_NONE, lambda *args: True)

    if handshake_settings.cipher_suites is None:
        cipher_list = 'ALL:COMPLEMENTOFALL'
    else:
        cipher_list = ':'.join(cs.openssl_name for cs in handshake_settings.cipher_suites)
    try:
        # Security level 0 is required for OpenSSL to offer TLS 1.0/1.1 and legacy suites at all.
        context.set_cipher_list(f'{cipher_list}:@SECLEVEL=0'.encode('ascii'))
    except SSL.Error as e:
        raise ClientConfigurationError(f'Local OpenSSL cannot offer cipher suites {cipher_list}: {", ".join(_openssl_reasons(e))}') from e
    return context

def _is_hostname(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return False
    except ValueError:
        return True

def _do_handshake(connection: SSL.Connection, sock: socket.socket) -> None:
    while True:
        try:
            connection.do_handshake()
            return
        except SSL.WantReadError as e:
            rd, _, _ = select.select([sock], [], [], sock.gettimeout())
            if not rd:
                raise ConnectionError('Timed out during handshake') from e
            continue
        except SSL.WantWriteError as e:
            _, wr, _ = select.select([], [sock], [], sock.gettimeout())
            if not wr:
                raise ConnectionError('Timed out during handshake') from e
            continue
        except SSL.SysCallError as e:
            # Reset or EOF instead of an alert. Some servers do this on any rejection, but
            # it can't be told apart from a network failure.
            raise ConnectionError(f'Connection lost during handshake: {e}') from e
        except SSL.Error as e:
            reasons = _openssl_reasons(e)
            raise HandshakeError(f'OpenSSL exception during handshake: {", ".join(reasons)}', reasons) from e

@contextmanager
def negotiate(connection_settings: ConnectionSettings, handshake_settings: HandshakeSettings) -> Iterator[NegotiatedSession]:
    """
    Performs a TLS handshake with the given constraints and yields what was negotiated.
    The connection is closed when the context exits, whatever the outcome.
    """
    context = make_context(handshake_settings)
    logger.debug(f"Negotiating with {connection_settings.host}:{connection_settings.port} using {handshake_settings}")
    with make_socket(connection_settings) as sock:
        connection = SSL.Connection(context, sock)
        connection.set_connect_state()
        # Necessary for servers that expect SNI. Otherwise expect "tlsv1 alert internal error".
        if _is_hostname(connection_settings.host):
            connection.set_tlsext_host_name(connection_settings.host.encode('utf-8'))
        _do_handshake(connection, sock)
        cipher_name = connection.get_cipher_name()
        session = NegotiatedSession(
            protocol=Protocol.from_code(connection.get_protocol_version()),
            cipher_suite=CipherSuite.from_openssl_name(cipher_name),
            protocol_name=connection.get_protocol_version_name(),
            cipher_name=cipher_name,
        )
        logger.debug(f"Negotiated {session.protocol_name} with {cipher_name}")
        try:
            yield session
        finally:
            try:
                connection.shutdown()
            except SSL.Error as e:
                # Best effort close_notify, the socket is closed regardless.
                logger.debug(f'Error during connection shutdown: {e!r}')
