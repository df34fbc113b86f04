from typing import Any, Callable, ContextManager, Generic, Optional, TypeVar
from enum import Enum
import dataclasses
import logging

from .handshake import ConnectionSettings, HandshakeError, HandshakeSettings, NegotiatedSession, ScanError, UnexpectedNegotiationError, negotiate
from .names_and_numbers import CipherSuite, Protocol

logger = logging.getLogger(__name__)

T = TypeVar('T', Protocol, CipherSuite)

Negotiator = Callable[[ConnectionSettings, HandshakeSettings], ContextManager[NegotiatedSession]]

class Outcome(Enum):
    SUPPORTED = 'supported'
    NOT_SUPPORTED = 'not supported'
    ERROR = 'error'

@dataclasses.dataclass(frozen=True)
class ProbeResult:
    """
    Result of testing a single capability. Only `ERROR` results carry an error.
    """
    outcome: Outcome
    error: Optional[ScanError] = None

    def __post_init__(self) -> None:
        if (self.outcome == Outcome.ERROR) != (self.error is not None):
            raise ValueError(f'Probe result {self.outcome} cannot have error {self.error!r}')

    @property
    def detail(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None

SUPPORTED = ProbeResult(Outcome.SUPPORTED)
NOT_SUPPORTED = ProbeResult(Outcome.NOT_SUPPORTED)

def rejected_with(*reasons: str) -> Callable[[ScanError], bool]:
    """
    Returns a check for handshake errors caused by any of the given OpenSSL reasons.
    Matching is exact, so unrelated failures are still reported as errors.
    """
    def is_absent(error: ScanError) -> bool:
        return isinstance(error, HandshakeError) and any(reason in reasons for reason in error.reasons)
    return is_absent

@dataclasses.dataclass(frozen=True)
class CapabilityProbe(Generic[T]):
    """
    Tests a single capability by pinning a handshake to it, so that the only way for the
    handshake to succeed is for the server to support exactly that capability.
    """
    # Human readable name of the capability being tested, for error messages.
    name: str
    make_settings: Callable[[T], HandshakeSettings]
    get_negotiated: Callable[[NegotiatedSession], Any]
    # Recognizes the errors that mean "the server doesn't support this", as opposed to real failures.
    is_absent: Callable[[ScanError], bool]
    negotiate: Negotiator = negotiate

    def __call__(self, candidate: T, connection_settings: ConnectionSettings) -> ProbeResult:
        handshake_settings = self.make_settings(candidate)
        try:
            with self.negotiate(connection_settings, handshake_settings) as session:
                negotiated = self.get_negotiated(session)
        except ScanError as e:
            if self.is_absent(e):
                logger.debug(f'Server does not support {self.name} {candidate!r}: {e}')
                return NOT_SUPPORTED
            return ProbeResult(Outcome.ERROR, e)

        if negotiated != candidate:
            # The handshake should never succeed outside the pinned constraints.
            return ProbeResult(Outcome.ERROR, UnexpectedNegotiationError(f'Client negotiated unexpected {self.name} {negotiated!r}, expected {candidate!r}'))
        logger.debug(f'Server supports {self.name} {candidate!r}')
        return SUPPORTED

    def with_negotiator(self, negotiate: Negotiator) -> 'CapabilityProbe[T]':
        return dataclasses.replace(self, negotiate=negotiate)

def _negotiated_protocol(session: NegotiatedSession) -> Any:
    return session.protocol or session.protocol_name

def _negotiated_cipher_suite(session: NegotiatedSession) -> Any:
    return session.cipher_suite or session.cipher_name

protocol_probe: CapabilityProbe[Protocol] = CapabilityProbe(
    name='protocol',
    make_settings=lambda protocol: HandshakeSettings(min_protocol=protocol, max_protocol=protocol),
    get_negotiated=_negotiated_protocol,
    is_absent=rejected_with(
        # No version in the pinned range is enabled in the local OpenSSL.
        'no protocols available',
        # Server picked a version outside the pinned range.
        'unsupported protocol',
        # Server sent a protocol_version alert.
        'tlsv1 alert protocol version',
    ),
)

cipher_suite_probe: CapabilityProbe[CipherSuite] = CapabilityProbe(
    name='cipher suite',
    make_settings=lambda cipher_suite: HandshakeSettings(min_protocol=Protocol.TLS1_2, max_protocol=Protocol.TLS1_2, cipher_suites=[cipher_suite]),
    get_negotiated=_negotiated_cipher_suite,
    # Server sent a handshake_failure alert. OpenSSL 3.2 renamed the reason string.
    is_absent=rejected_with('sslv3 alert handshake failure', 'ssl/tls alert handshake failure'),
)

def probe_protocol(protocol: Protocol, connection_settings: ConnectionSettings) -> ProbeResult:
    """
    Tests if the server accepts a handshake pinned to exactly `protocol`.
    """
    return protocol_probe(protocol, connection_settings)

def probe_cipher_suite(cipher_suite: CipherSuite, connection_settings: ConnectionSettings) -> ProbeResult:
    """
    Tests if the server accepts a TLS 1.2 handshake offering only `cipher_suite`.
    """
    return cipher_suite_probe(cipher_suite, connection_settings)
