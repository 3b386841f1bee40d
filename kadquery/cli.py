"""
Командная строка для kadquery
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from kadquery.cancellation import CancellationToken
from kadquery.config import DHT_MODES, QUERY_STRATEGIES, Config
from kadquery.exceptions import (
    BootstrapError,
    ConfigError,
    DHTError,
    DirectQueryError,
    InvalidAddressError,
    InvalidIdentityError,
)
from kadquery.logger import setup_logging
from kadquery.node.node import Node
from kadquery.parser import parse_bootnodes, parse_target
from kadquery.peer.address import PeerAddress
from kadquery.peer.identity import PeerIdentity
from kadquery.query.base import build_query
from kadquery.reporter import ResultReporter

EXIT_OK = 0
EXIT_QUERY_FAILED = 1
EXIT_USAGE = 2
EXIT_CONFIG = 3


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError("must be positive")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kadquery", description="Locate a peer on a Kademlia DHT through bootstrap nodes"
    )
    parser.add_argument("bootnodes", nargs="?", help="Comma-separated bootstrap multiaddrs with /p2p/ ids")
    parser.add_argument("query", nargs="?", help="Target peer identity")
    parser.add_argument("--config", type=Path, default=Path("config.yaml"), help="Path to configuration file")
    parser.add_argument("--strategy", choices=QUERY_STRATEGIES, help="Override query strategy from config")
    parser.add_argument("--timeout", type=_positive_float, help="Query deadline in seconds")
    parser.add_argument("--mode", choices=DHT_MODES, help="Override DHT mode from config")
    parser.add_argument("--log-level", help="Override log level from config")
    return parser


def _fail(message: str, code: int) -> int:
    print(message, file=sys.stderr)
    return code


def main(argv: Optional[List[str]] = None) -> int:
    """Главная функция CLI"""
    args = build_parser().parse_args(argv)

    if not args.bootnodes or not args.bootnodes.strip(", "):
        return _fail('Missing "bootnodes"', EXIT_USAGE)
    if not args.query:
        return _fail('Missing "query"', EXIT_USAGE)

    try:
        config = Config.from_file(args.config)
    except ConfigError as e:
        return _fail(f"Error: {e}", EXIT_CONFIG)

    if args.strategy:
        config.query.strategy = args.strategy
    if args.timeout:
        config.query.timeout = args.timeout
    if args.mode:
        config.dht.mode = args.mode
    if args.log_level:
        config.log_level = args.log_level

    try:
        bootnodes = parse_bootnodes(args.bootnodes)
        target = parse_target(args.query)
    except (InvalidAddressError, InvalidIdentityError) as e:
        return _fail(f"Error: {e}", EXIT_USAGE)

    setup_logging(log_level=config.log_level, log_file=config.log_file)

    try:
        return asyncio.run(run_query(config, bootnodes, target))
    except KeyboardInterrupt:
        return _fail("Interrupted by user", EXIT_QUERY_FAILED)


async def run_query(
    config: Config,
    bootnodes: List[PeerAddress],
    target: PeerIdentity,
    reporter: Optional[ResultReporter] = None,
) -> int:
    """
    Bootstrap узла, выполнение запроса и вывод результата

    Returns:
        Код завершения процесса
    """
    reporter = reporter or ResultReporter()

    try:
        node = Node(config, bootstrap_addrs=bootnodes)
    except (ConfigError, OSError, ValueError) as e:
        return _fail(f"Error: {e}", EXIT_CONFIG)

    # Один дедлайн на bootstrap и запрос
    token = CancellationToken(timeout=config.query.timeout)
    try:
        await node.start(token)
        query = build_query(config.query.strategy, node, config.query)
        result = await query.execute(target, token)
    except BootstrapError as e:
        return _fail(f"Error: {e}", EXIT_CONFIG)
    except (DirectQueryError, DHTError) as e:
        node.logger.error("Query failed", strategy=config.query.strategy, error=str(e))
        return _fail(f"Error: {e}", EXIT_QUERY_FAILED)
    finally:
        token.close()
        await node.stop()

    reporter.report(result)
    return EXIT_OK


def build_node_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kadquery-node", description="Run a server-mode node answering DHT and direct queries"
    )
    parser.add_argument("-l", "--listen", action="append", default=[], help="Listen multiaddr (repeatable)")
    parser.add_argument("-b", "--bootnodes", default="", help="Comma-separated bootstrap multiaddrs")
    parser.add_argument("--config", type=Path, default=Path("config.yaml"), help="Path to configuration file")
    parser.add_argument("--log-level", help="Override log level from config")
    return parser


def node_main(argv: Optional[List[str]] = None) -> int:
    """Запуск долгоживущего server-узла"""
    args = build_node_parser().parse_args(argv)

    try:
        config = Config.from_file(args.config)
        bootnodes = parse_bootnodes(args.bootnodes) if args.bootnodes else None
    except ConfigError as e:
        return _fail(f"Error: {e}", EXIT_CONFIG)
    except InvalidAddressError as e:
        return _fail(f"Error: {e}", EXIT_USAGE)

    config.dht.mode = "server"
    if args.listen:
        config.network.listen_addrs = list(args.listen)
    if args.log_level:
        config.log_level = args.log_level

    setup_logging(log_level=config.log_level, log_file=config.log_file)

    try:
        node = Node(config, bootstrap_addrs=bootnodes)
    except InvalidAddressError as e:
        return _fail(f"Error: {e}", EXIT_USAGE)
    except (ConfigError, OSError, ValueError) as e:
        return _fail(f"Error: {e}", EXIT_CONFIG)

    try:
        return asyncio.run(run_node(node))
    except KeyboardInterrupt:
        print("\nShutting down...")
        return EXIT_OK


async def run_node(node: Node) -> int:
    """Запуск узла"""
    try:
        await node.start()
    except BootstrapError as e:
        return _fail(f"Error: {e}", EXIT_CONFIG)

    print(f"Peer ID: {node.peer_id}")
    for addr in node.listen_addrs:
        print(f"Listening on {addr}")
    sys.stdout.flush()

    try:
        # Бесконечный цикл
        while node.is_running:
            await asyncio.sleep(1)
    finally:
        await node.stop()
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
