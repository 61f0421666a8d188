#!/usr/bin/env python3
"""
Remote Gateway - Entry Point
==============================
Standalone startup for the remote-access gateway, backed by an in-memory
data accessor. A desktop host embeds GatewayServer directly instead.

Usage:
    python app.py                          # Start with config.yaml settings
    python app.py --port 3001              # Start on custom port
    python app.py --seed data/seed.yaml    # Preload projects and settings
    python app.py --port 3001 --save       # Also remember the port in config.yaml

The shared password is read from --password, then GATEWAY_PASSWORD in
.env, then the environment.

This script:
    1. Loads environment variables from .env
    2. Loads configuration from config.yaml
    3. Creates the GatewayServer with a MemoryAccessor
    4. Starts serving and blocks until Ctrl+C
"""

import argparse
import logging
import os
import sys
import threading

from dotenv import load_dotenv


def main(argv=None, project_dir=None):
    """
    Parse arguments, load config, and start the gateway.

    Args:
        argv:        Command-line arguments (defaults to sys.argv[1:]).
        project_dir: Directory holding config.yaml, .env and web/.
                     Defaults to the directory of this script.
    """

    # -- Parse command-line arguments ------------------------------------------
    parser = argparse.ArgumentParser(
        description="Remote Gateway - LAN access to the desktop writing app",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port number for the gateway (overrides config.yaml)",
    )
    parser.add_argument(
        "--host", type=str, default=None,
        help="Host binding address (overrides config.yaml)",
    )
    parser.add_argument(
        "--password", type=str, default=None,
        help="Shared remote-access password (overrides .env)",
    )
    parser.add_argument(
        "--seed", type=str, default=None,
        help="YAML file with projects/settings for the in-memory store",
    )
    parser.add_argument(
        "--save", action="store_true",
        help="Write --host/--port back to config.yaml once the gateway is up",
    )
    args = parser.parse_args(argv)

    # -- Resolve project directory ---------------------------------------------
    if project_dir is None:
        project_dir = os.path.dirname(os.path.abspath(__file__))

    # -- Load environment variables from .env ----------------------------------
    env_path = os.path.join(project_dir, ".env")
    if os.path.exists(env_path):
        load_dotenv(env_path)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # -- Load configuration ----------------------------------------------------
    from gateway.accessor import MemoryAccessor
    from gateway.config import ConfigManager
    from gateway.server import GatewayServer

    config_manager = ConfigManager(project_dir)
    config = config_manager.load()
    if "_config_error" in config:
        print(f"[WARN] config.yaml could not be read, using defaults: {config['_config_error']}")

    web = config["web"]
    if args.host:
        web["host"] = args.host
    port = args.port or web["port"]
    password = args.password or config_manager.get_password()

    seed_file = args.seed or config["data"].get("seed_file")
    accessor = MemoryAccessor.from_yaml(seed_file) if seed_file else MemoryAccessor()

    gateway = GatewayServer(
        accessor=accessor,
        settings=web,
        bcrypt_rounds=config["auth"]["bcrypt_rounds"],
        project_dir=project_dir,
    )

    # -- Start the gateway -----------------------------------------------------
    result = gateway.start(port, password)
    if not result["success"]:
        print(f"[ERROR] {result['error']}")
        sys.exit(1)

    if args.save:
        config_manager.update({"web": {"host": gateway.host, "port": result["port"]}})
        print(f"[OK] Saved host/port to {config_manager.config_path}")

    print()
    print("  ╔══════════════════════════════════════════════╗")
    print("  ║           REMOTE GATEWAY                     ║")
    print("  ║   LAN access to the desktop writing app      ║")
    print("  ╚══════════════════════════════════════════════╝")
    print()
    for address in result["ips"]["ipv4"]:
        print(f"  Remote  : http://{address}:{result['port']}")
    print(f"  Local   : http://127.0.0.1:{result['port']}")
    print()

    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        print()
    finally:
        gateway.stop()


if __name__ == "__main__":
    main()
