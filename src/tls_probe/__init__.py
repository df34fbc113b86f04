from .scan import scan_server, scan_capabilities, scan_protocols, scan_cipher_suites, ServerScanResult, to_json_obj, DEFAULT_MAX_WORKERS
from .probe import Outcome, ProbeResult, CapabilityProbe, probe_protocol, probe_cipher_suite, protocol_probe, cipher_suite_probe
from .handshake import ScanError, ConnectionError, ProxyError, HandshakeError, ClientConfigurationError, UnexpectedNegotiationError
from .handshake import ConnectionSettings, HandshakeSettings, NegotiatedSession, negotiate, parse_target, DEFAULT_TIMEOUT
from .names_and_numbers import Protocol, CipherSuite, ALL_PROTOCOLS, ALL_CIPHER_SUITES
from . import scan, probe, handshake
