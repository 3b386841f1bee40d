#!/usr/bin/env python3
"""
Простой скрипт для запуска bootstrap узла kadquery
"""

import asyncio
import sys
from pathlib import Path

from kadquery.config import Config
from kadquery.exceptions import InvalidAddressError
from kadquery.logger import setup_logging
from kadquery.node.node import Node


async def main():
    """Главная функция"""
    # Загрузка конфигурации
    config_path = Path("config.yaml")
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}")
        print("Please create config.yaml or copy from config.yaml.example")
        sys.exit(1)

    config = Config.from_file(config_path)
    config.dht.mode = "server"
    setup_logging(log_level=config.log_level, log_file=config.log_file)

    # Создание узла
    try:
        node = Node(config)
    except InvalidAddressError as e:
        print(f"Error: {e}")
        sys.exit(2)

    try:
        print(f"Starting kadquery node (mode: {node.mode})...")
        print(f"Peer ID: {node.peer_id}")

        await node.start()

        for addr in node.listen_addrs:
            print(f"Listening on {addr}")
        print("Press Ctrl+C to stop")

        # Бесконечный цикл
        while node.is_running:
            await asyncio.sleep(1)

    finally:
        print("\nShutting down...")
        await node.stop()
        print("Node stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(0)
