"""
Run script for the personalized content API.
Starts the Quart app under Hypercorn.
Can be run from project root or src directory.
"""
import os
import sys
import asyncio
import argparse
import logging
from pathlib import Path

# This script is at: <project_root>/src/api/run_api.py
script_path = Path(__file__).resolve()
src_path = script_path.parent.parent
project_root = src_path.parent

sys.path.insert(0, str(src_path))

# Relative paths in config.yml resolve against the project root
os.chdir(project_root)

from dotenv import load_dotenv
from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig

from services.logging import setup_logging

load_dotenv(project_root / '.env')

logger = logging.getLogger(__name__)


def init_database():
    """Create the pipeline tables."""
    from services.config import load_config
    from services.database import Database

    config = load_config()
    db = Database(config.DATABASE_PATH)

    asyncio.run(db.initialize())
    print(f"Database initialized at: {os.path.abspath(config.DATABASE_PATH)}")


def run_server(host: str = '0.0.0.0', port: int = 8000, debug: bool = False):
    """Run the API server."""
    from api.app import app

    logger.info(f"Starting personalized content API on http://{host}:{port}")

    config = HypercornConfig()
    config.bind = [f"{host}:{port}"]
    config.use_reloader = debug
    config.accesslog = '-'
    config.errorlog = '-'

    asyncio.run(serve(app, config))


def main():
    parser = argparse.ArgumentParser(description='Personalized content API')
    parser.add_argument('command', nargs='?', default='run',
                        choices=['run', 'init-db'],
                        help='Command to execute')
    parser.add_argument('--host', default='0.0.0.0',
                        help='Host to bind to (default: 0.0.0.0)')
    parser.add_argument('--port', type=int, default=8000,
                        help='Port to bind to (default: 8000)')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug mode')

    args = parser.parse_args()
    setup_logging(logging.DEBUG if args.debug else logging.INFO)

    logger.info(f"Project root: {project_root}")

    if args.command == 'init-db':
        init_database()
    else:
        run_server(host=args.host, port=args.port, debug=args.debug)


if __name__ == '__main__':
    main()
