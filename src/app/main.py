"""Entrypoint.

Usage:
  python -m src.app.main engine              # run the 5-minute decision loop
  python -m src.app.main tick [--symbol S]   # run one tick now and print the report
  python -m src.app.main api                 # run FastAPI server
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

import uvicorn

from src.app.engine import run_engine, run_single_tick
from src.infrastructure.utils.config import load_config


def main() -> None:
    parser = argparse.ArgumentParser("ai-trader")
    parser.add_argument("command", choices=["engine", "tick", "api"], help="What to run")
    parser.add_argument("--config", type=Path, default=None, help="YAML config path")
    parser.add_argument("--symbol", default=None, help="Symbol for 'tick' (default: all configured)")
    args = parser.parse_args()

    if args.command == "engine":
        asyncio.run(run_engine(args.config))
        return

    if args.command == "tick":
        reports = asyncio.run(run_single_tick(args.symbol, args.config))
        for report in reports:
            print(json.dumps(report.to_dict(), indent=2, default=str))
        return

    if args.command == "api":
        config = load_config(args.config)
        from src.controllers.api_controller import create_app

        uvicorn.run(create_app(config=config), host=config.api.host, port=config.api.port, reload=False)
        return


if __name__ == "__main__":
    main()
