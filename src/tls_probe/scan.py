from enum import Enum
from multiprocessing.pool import ThreadPool
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar, Union
import dataclasses
import logging

from .handshake import ConnectionSettings, parse_target
from .names_and_numbers import ALL_CIPHER_SUITES, ALL_PROTOCOLS, CipherSuite, Protocol
from .probe import Outcome, ProbeResult, probe_cipher_suite, probe_protocol

logger = logging.getLogger(__name__)

# Default number of workers/threads/concurrent connections to use.
DEFAULT_MAX_WORKERS: int = 6

T = TypeVar('T', Protocol, CipherSuite)

def log_probe_error(candidate: Any, result: ProbeResult) -> None:
    logger.warning(f'Error checking if server supports {candidate!r}: {result.detail}')

def scan_capabilities(
    connection_settings: ConnectionSettings,
    candidates: Sequence[T],
    probe: Callable[[T, ConnectionSettings], ProbeResult],
    max_workers: int = DEFAULT_MAX_WORKERS,
    on_error: Callable[[T, ProbeResult], None] = log_probe_error,
    progress: Callable[[int, int], None] = lambda current, total: None,
    ) -> List[T]:
    """
    Probes each candidate and returns the ones the server supports, in the same order as `candidates`.

    Errors are passed to `on_error` and never stop the scan. Probes run in parallel on up to
    `max_workers` threads, but `on_error` and `progress` are only called from the current thread.
    """
    # Keep the first occurrence of each candidate.
    candidates = list(dict.fromkeys(candidates))
    supported: List[T] = []

    with ThreadPool(max_workers) as pool:
        # `imap` yields results in submission order, whatever order the probes finish in.
        results = pool.imap(lambda candidate: probe(candidate, connection_settings), candidates)
        for i, (candidate, result) in enumerate(zip(candidates, results)):
            if result.outcome == Outcome.SUPPORTED:
                supported.append(candidate)
            elif result.outcome == Outcome.ERROR:
                on_error(candidate, result)
            progress(i+1, len(candidates))

    return supported

def scan_protocols(connection_settings: ConnectionSettings, protocols: Sequence[Protocol] = ALL_PROTOCOLS, **kwargs) -> List[Protocol]:
    """
    Returns the protocol versions the server accepts, oldest to newest.
    """
    logger.info(f"Enumerating {len(protocols)} protocols on {connection_settings.host}:{connection_settings.port}")
    return scan_capabilities(connection_settings, protocols, probe_protocol, **kwargs)

def scan_cipher_suites(connection_settings: ConnectionSettings, cipher_suites: Sequence[CipherSuite] = ALL_CIPHER_SUITES, **kwargs) -> List[CipherSuite]:
    """
    Returns the cipher suites the server accepts over TLS 1.2, secure ones first.
    """
    logger.info(f"Enumerating {len(cipher_suites)} TLS 1.2 cipher suites on {connection_settings.host}:{connection_settings.port}")
    return scan_capabilities(connection_settings, cipher_suites, probe_cipher_suite, **kwargs)

@dataclasses.dataclass
class ServerScanResult:
    connection: ConnectionSettings
    protocols: Optional[List[Protocol]]
    cipher_suites: Optional[List[CipherSuite]]
    # Error details by candidate name, for candidates that could not be tested.
    errors: Dict[str, str] = dataclasses.field(default_factory=dict)

def scan_server(
    connection_settings: Union[ConnectionSettings, str],
    do_scan_protocols: bool = True,
    do_scan_cipher_suites: bool = True,
    protocols: Sequence[Protocol] = ALL_PROTOCOLS,
    cipher_suites: Sequence[CipherSuite] = ALL_CIPHER_SUITES,
    max_workers: int = DEFAULT_MAX_WORKERS,
    progress: Callable[[int, int], None] = lambda current, total: None,
    ) -> ServerScanResult:
    """
    Scans a TLS server for supported protocol versions and TLS 1.2 cipher suites.

    Each capability is tested with its own handshake, with up to `max_workers` threads connecting at the same time.
    """
    if isinstance(connection_settings, str):
        connection_settings = ConnectionSettings(*parse_target(connection_settings))

    logger.info(f"Scanning {connection_settings.host}:{connection_settings.port}")

    result = ServerScanResult(connection=connection_settings, protocols=None, cipher_suites=None)

    def on_error(candidate: Any, probe_result: ProbeResult) -> None:
        log_probe_error(candidate, probe_result)
        result.errors[candidate.name] = probe_result.detail

    total = (len(protocols) if do_scan_protocols else 0) + (len(cipher_suites) if do_scan_cipher_suites else 0)
    done = 0
    def make_progress() -> Callable[[int, int], None]:
        # Reports progress over both scans, offset by what earlier scans already did.
        offset = done
        return lambda current, _: progress(offset + current, total)

    if do_scan_protocols:
        result.protocols = scan_protocols(connection_settings, protocols, max_workers=max_workers, on_error=on_error, progress=make_progress())
        done += len(protocols)

    if do_scan_cipher_suites:
        result.cipher_suites = scan_cipher_suites(connection_settings, cipher_suites, max_workers=max_workers, on_error=on_error, progress=make_progress())

    logger.info(f"Finished scanning {connection_settings.host}:{connection_settings.port} with {len(result.errors)} errors")
    return result

def to_json_obj(o: Any) -> Any:
    """
    Converts an object to a JSON-serializable structure, replacing dataclasses, enums, sets, etc.
    """
    if isinstance(o, dict):
        return {to_json_obj(key): to_json_obj(value) for key, value in o.items()}
    elif dataclasses.is_dataclass(o):
        return to_json_obj(dataclasses.asdict(o))
    elif isinstance(o, set):
        return sorted(to_json_obj(item) for item in o)
    elif isinstance(o, (tuple, list)):
        return [to_json_obj(item) for item in o]
    elif isinstance(o, Enum):
        return o.name
    return o
