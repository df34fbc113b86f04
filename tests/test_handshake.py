import io
import socket
import threading
import types
import pytest
from OpenSSL import SSL
from tls_probe import *

class FakeSocket:
    """ Stands in for a connected socket, counting how many are opened and closed. """
    opened = 0
    closed = 0

    def __init__(self, proxy_response: bytes = b'', proxy_file=None):
        FakeSocket.opened += 1
        self.is_closed = False
        self.sent = b''
        self.proxy_response = proxy_response
        self.proxy_file = proxy_file

    def __enter__(self):
        return self
    def __exit__(self, *args):
        self.close()
    def close(self):
        if not self.is_closed:
            FakeSocket.closed += 1
        self.is_closed = True
    def gettimeout(self):
        return 2
    def send(self, data: bytes) -> int:
        self.sent += data
        return len(data)
    def makefile(self, mode):
        assert mode == 'rb'
        if self.proxy_file is not None:
            return self.proxy_file
        return io.BytesIO(self.proxy_response)

@pytest.fixture
def fake_transport(monkeypatch):
    """
    Replaces the socket and the OpenSSL connection. Returns a namespace to configure
    what the fake server negotiates, or which error the handshake raises.
    """
    FakeSocket.opened = FakeSocket.closed = 0
    server = types.SimpleNamespace(version=0x0303, version_name='TLSv1.2', cipher='ECDHE-RSA-AES128-GCM-SHA256', error=None, first_errors=[], server_names=[], shutdowns=0)

    class FakeConnection:
        def __init__(self, context, sock):
            assert context == 'context'
        def set_connect_state(self):
            pass
        def set_tlsext_host_name(self, name: bytes):
            server.server_names.append(name)
        def do_handshake(self):
            if server.first_errors:
                raise server.first_errors.pop(0)
            if server.error is not None:
                raise server.error
        def get_protocol_version(self):
            return server.version
        def get_protocol_version_name(self):
            return server.version_name
        def get_cipher_name(self):
            return server.cipher
        def shutdown(self):
            server.shutdowns += 1
            return True

    monkeypatch.setattr(handshake, 'make_socket', lambda settings: FakeSocket())
    monkeypatch.setattr(handshake, 'make_context', lambda handshake_settings: 'context')
    monkeypatch.setattr(handshake.SSL, 'Connection', FakeConnection)
    return server

def test_negotiate_success(fake_transport):
    settings = HandshakeSettings(Protocol.TLS1_2, Protocol.TLS1_2)
    with negotiate(ConnectionSettings('example.com'), settings) as session:
        assert FakeSocket.closed == 0
    assert session == NegotiatedSession(Protocol.TLS1_2, CipherSuite.TLS_ECDHE_RSA_WITH_AES_128_GCM_SHA256, 'TLSv1.2', 'ECDHE-RSA-AES128-GCM-SHA256')
    assert fake_transport.server_names == [b'example.com']
    assert fake_transport.shutdowns == 1
    assert FakeSocket.opened == FakeSocket.closed == 1

def test_negotiate_no_sni_for_ip(fake_transport):
    with negotiate(ConnectionSettings('127.0.0.1'), HandshakeSettings(Protocol.TLS1_2, Protocol.TLS1_2)):
        pass
    assert fake_transport.server_names == []

def test_negotiate_unknown_values(fake_transport):
    fake_transport.version, fake_transport.version_name, fake_transport.cipher = 0x0300, 'SSLv3', 'RC4-MD5'
    with negotiate(ConnectionSettings('example.com'), HandshakeSettings(Protocol.TLS1_0, Protocol.TLS1_0)) as session:
        assert session.protocol is None
        assert session.cipher_suite is None
        assert session.protocol_name == 'SSLv3'

def test_negotiate_handshake_error(fake_transport):
    fake_transport.error = SSL.Error([('SSL routines', '', 'sslv3 alert handshake failure')])
    with pytest.raises(HandshakeError) as e:
        with negotiate(ConnectionSettings('example.com'), HandshakeSettings(Protocol.TLS1_2, Protocol.TLS1_2)):
            pass
    assert e.value.reasons == ['sslv3 alert handshake failure']
    assert FakeSocket.opened == FakeSocket.closed == 1

def test_negotiate_reset(fake_transport):
    fake_transport.error = SSL.SysCallError(104, 'ECONNRESET')
    with pytest.raises(ConnectionError):
        with negotiate(ConnectionSettings('example.com'), HandshakeSettings(Protocol.TLS1_2, Protocol.TLS1_2)):
            pass
    assert FakeSocket.opened == FakeSocket.closed == 1

@pytest.mark.parametrize('version, error, expected', [
    (0x0303, None, Outcome.SUPPORTED),
    (0x0301, None, Outcome.ERROR),
    (0x0303, SSL.Error([('SSL routines', '', 'tlsv1 alert protocol version')]), Outcome.NOT_SUPPORTED),
    (0x0303, SSL.Error([('SSL routines', '', 'wrong version number')]), Outcome.ERROR),
    (0x0303, SSL.SysCallError(-1, 'Unexpected EOF'), Outcome.ERROR),
])
def test_probe_always_closes(fake_transport, version, error, expected):
    fake_transport.version = version
    fake_transport.error = error
    # Goes through the real `negotiate`, on top of the fake transport.
    assert probe_protocol(Protocol.TLS1_2, ConnectionSettings('example.com')).outcome == expected
    assert FakeSocket.opened == FakeSocket.closed == 1

def test_make_context_pins_versions():
    context = handshake.make_context(HandshakeSettings(Protocol.TLS1_2, Protocol.TLS1_2, [CipherSuite.TLS_ECDHE_RSA_WITH_AES_128_GCM_SHA256]))
    connection = SSL.Connection(context, None)
    assert 'ECDHE-RSA-AES128-GCM-SHA256' in connection.get_cipher_list()
    assert 'ECDHE-RSA-AES256-GCM-SHA384' not in connection.get_cipher_list()

def test_make_context_unavailable_cipher_suite():
    not_a_cipher = types.SimpleNamespace(openssl_name='NOT-A-CIPHER')
    with pytest.raises(ClientConfigurationError):
        handshake.make_context(HandshakeSettings(Protocol.TLS1_2, Protocol.TLS1_2, [not_a_cipher]))

def test_make_socket_direct(monkeypatch):
    def create_connection(address, timeout):
        assert address == ('example.com', 8443)
        assert timeout == 5
        return FakeSocket()
    monkeypatch.setattr(handshake.socket, 'create_connection', create_connection)
    assert isinstance(handshake.make_socket(ConnectionSettings('example.com', 8443, timeout_in_seconds=5)), FakeSocket)

def test_make_socket_unresolvable(monkeypatch):
    def create_connection(address, timeout):
        raise socket.gaierror(-2, 'Name or service not known')
    monkeypatch.setattr(handshake.socket, 'create_connection', create_connection)
    with pytest.raises(ConnectionError, match='Could not resolve host example.invalid'):
        handshake.make_socket(ConnectionSettings('example.invalid'))

def test_make_socket_timeout(monkeypatch):
    def create_connection(address, timeout):
        raise TimeoutError()
    monkeypatch.setattr(handshake.socket, 'create_connection', create_connection)
    with pytest.raises(ConnectionError, match='timed out'):
        handshake.make_socket(ConnectionSettings('example.com'))

def test_make_socket_proxy(monkeypatch):
    sock = FakeSocket(b'HTTP/1.1 200 Connection established\r\nVia: proxy\r\n\r\n')
    def create_connection(address, timeout):
        assert address == ('proxy.local', 3128)
        return sock
    monkeypatch.setattr(handshake.socket, 'create_connection', create_connection)
    assert handshake.make_socket(ConnectionSettings('example.com', proxy='http://proxy.local:3128')) is sock
    assert sock.sent.startswith(b'CONNECT example.com:443 HTTP/1.1\r\n')
    assert not sock.is_closed

def test_make_socket_proxy_refused(monkeypatch):
    sock = FakeSocket(b'HTTP/1.1 403 Forbidden\r\n\r\n')
    monkeypatch.setattr(handshake.socket, 'create_connection', lambda address, timeout: sock)
    with pytest.raises(ProxyError):
        handshake.make_socket(ConnectionSettings('example.com', proxy='http://proxy.local:3128'))
    assert sock.is_closed

def test_make_socket_proxy_closes_after_status_line(monkeypatch):
    sock = FakeSocket(b'HTTP/1.1 200 Connection established\r\n')
    monkeypatch.setattr(handshake.socket, 'create_connection', lambda address, timeout: sock)
    errors = []
    def connect():
        try:
            handshake.make_socket(ConnectionSettings('example.com', proxy='http://proxy.local:3128'))
        except ScanError as e:
            errors.append(e)
    # Run in a thread so a regression shows up as a failure instead of a hung test run.
    thread = threading.Thread(target=connect, daemon=True)
    thread.start()
    thread.join(3)
    assert not thread.is_alive()
    assert len(errors) == 1 and isinstance(errors[0], ProxyError)
    assert sock.is_closed

class TimeoutAfterStatusLine(io.BytesIO):
    def readline(self, *args):
        line = super().readline(*args)
        if not line:
            raise TimeoutError('timed out')
        return line

def test_make_socket_proxy_timeout_closes_socket(monkeypatch):
    sock = FakeSocket(proxy_file=TimeoutAfterStatusLine(b'HTTP/1.1 200 Connection established\r\n'))
    monkeypatch.setattr(handshake.socket, 'create_connection', lambda address, timeout: sock)
    with pytest.raises(ConnectionError, match='timed out'):
        handshake.make_socket(ConnectionSettings('example.com', proxy='http://proxy.local:3128'))
    assert sock.is_closed

def test_make_socket_proxy_garbage(monkeypatch):
    sock = FakeSocket(b'\xff\xfe\x00\x81garbage\r\n\r\n')
    monkeypatch.setattr(handshake.socket, 'create_connection', lambda address, timeout: sock)
    with pytest.raises(ProxyError):
        handshake.make_socket(ConnectionSettings('example.com', proxy='http://proxy.local:3128'))
    assert sock.is_closed

def test_proxy_garbage_does_not_abort_scan(monkeypatch):
    sockets = []
    def create_connection(address, timeout):
        sockets.append(FakeSocket(b'\xff\xfe\x00\x81garbage\r\n\r\n'))
        return sockets[-1]
    monkeypatch.setattr(handshake.socket, 'create_connection', create_connection)
    errors = []
    report = scan_protocols(ConnectionSettings('example.com', proxy='http://proxy.local:3128'), max_workers=1, on_error=lambda c, r: errors.append(c))
    assert report == []
    assert errors == list(ALL_PROTOCOLS)
    assert len(sockets) == 4 and all(sock.is_closed for sock in sockets)

def test_negotiate_waits_for_writable(fake_transport, monkeypatch):
    fake_transport.first_errors = [SSL.WantWriteError()]
    selected = []
    def select(rlist, wlist, xlist, timeout):
        selected.append((rlist, wlist))
        return rlist, wlist, xlist
    monkeypatch.setattr(handshake.select, 'select', select)
    assert probe_protocol(Protocol.TLS1_2, ConnectionSettings('example.com')).outcome == Outcome.SUPPORTED
    assert len(selected) == 1 and selected[0][0] == [] and len(selected[0][1]) == 1

def test_negotiate_write_timeout(fake_transport, monkeypatch):
    fake_transport.first_errors = [SSL.WantWriteError()]
    monkeypatch.setattr(handshake.select, 'select', lambda rlist, wlist, xlist, timeout: ([], [], []))
    with pytest.raises(ConnectionError, match='Timed out during handshake'):
        with negotiate(ConnectionSettings('example.com'), HandshakeSettings(Protocol.TLS1_2, Protocol.TLS1_2)):
            pass
    assert FakeSocket.opened == FakeSocket.closed == 1

def test_make_socket_unsupported_proxy():
    with pytest.raises(ProxyError):
        handshake.make_socket(ConnectionSettings('example.com', proxy='socks5://proxy.local:1080'))

def test_parse_target():
    assert parse_target('example.com') == ('example.com', 443)
    assert parse_target('example.com:8443') == ('example.com', 8443)
    assert parse_target('https://example.com:8443/sample/path?query#path') == ('example.com', 8443)
    assert parse_target(':8443') == ('localhost', 8443)
    assert parse_target('proxy.local', 80) == ('proxy.local', 80)
