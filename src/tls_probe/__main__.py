from .scan import scan_server, DEFAULT_MAX_WORKERS, to_json_obj
from .handshake import ConnectionSettings, DEFAULT_TIMEOUT, parse_target

import os
import sys
import json
import logging
import argparse
parser = argparse.ArgumentParser(prog="python -m tls_probe", formatter_class=argparse.ArgumentDefaultsHelpFormatter)
parser.add_argument("target", help="server to scan, in the form of 'example.com', 'example.com:443', or even a full URL")
parser.add_argument("--timeout", "-t", dest="timeout", type=float, default=DEFAULT_TIMEOUT, help="socket connection timeout in seconds")
parser.add_argument("--max-workers", "-w", type=int, default=DEFAULT_MAX_WORKERS, help="maximum number of threads/concurrent connections to use for scanning, 1 to probe sequentially")
parser.add_argument("--protocols", "-p", dest="scan_protocols", default=True, action=argparse.BooleanOptionalAction, help="enumerate supported TLS protocol versions")
parser.add_argument("--cipher-suites", "-C", dest="scan_cipher_suites", default=True, action=argparse.BooleanOptionalAction, help="enumerate supported TLS 1.2 cipher suites")
parser.add_argument("--proxy", default=None, help="HTTP proxy to use for the connection, defaults to the env variable 'https_proxy' else no proxy")
parser.add_argument("--json", default=False, action=argparse.BooleanOptionalAction, help="print results as JSON")
parser.add_argument("--verbose", "-v", action="count", default=0, help="increase output verbosity")
parser.add_argument("--progress", default=False, action=argparse.BooleanOptionalAction, help="write lines with progress percentages to stderr")
args = parser.parse_args()

logging.basicConfig(
    datefmt='%Y-%m-%d %H:%M:%S',
    format='{asctime}.{msecs:0<3.0f} {module} {threadName} {levelname}: {message}',
    style='{',
    level=[logging.WARNING, logging.INFO, logging.DEBUG][min(2, args.verbose)]
)

if args.max_workers < 1:
    parser.error("max workers must be at least 1")
if not args.scan_protocols and not args.scan_cipher_suites:
    parser.error("nothing to scan, use --protocols or --cipher-suites")

try:
    host, port = parse_target(args.target)
except ValueError as e:
    parser.error(f'invalid target "{args.target}": {e}')

proxy = os.environ.get('https_proxy') or os.environ.get('HTTPS_PROXY') if args.proxy is None else args.proxy

if args.progress:
    progress = lambda current, total: print(f'{current/total:.0%}', flush=True, file=sys.stderr)
    print('0%', flush=True, file=sys.stderr)
else:
    progress = lambda current, total: None

logging.info(f'Using host "{host}" and port "{port}"')

results = scan_server(
    ConnectionSettings(
        host=host,
        port=port,
        proxy=proxy,
        timeout_in_seconds=args.timeout
    ),
    do_scan_protocols=args.scan_protocols,
    do_scan_cipher_suites=args.scan_cipher_suites,
    max_workers=args.max_workers,
    progress=progress,
)

if args.json:
    json.dump(to_json_obj(results), sys.stdout, indent=2)
else:
    if results.protocols is not None:
        print('Supported TLS Versions:')
        for protocol in results.protocols:
            print(f'- {protocol.display_name}')
    if results.cipher_suites is not None:
        print('Supported TLS1.2 Ciphers:')
        for cipher_suite in results.cipher_suites:
            print(f'- {cipher_suite.name}')
