from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import yaml

from .config import load_config, validate_config
from .errors import ConfigError, DataUnavailable
from .runner import AlertRunner


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Play Sentinel - market structure signal alerts (one tick)")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--dry-run", action="store_true", help="Evaluate and report, send nothing, keep the cache")
    p.add_argument("--log-level", default=None, help="Override app.log_level (DEBUG, INFO, ...)")
    args = p.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except (OSError, TypeError, ValueError, yaml.YAMLError) as e:
        _setup_logging("INFO")
        logging.getLogger("main").error("fatal_config path=%s err=%s", args.config, e)
        return 1
    _setup_logging(args.log_level or cfg.app.log_level)
    log = logging.getLogger("main")

    try:
        validate_config(cfg, dry_run=args.dry_run)
    except ConfigError as e:
        log.error("fatal_config err=%s", e)
        return 1

    runner = AlertRunner(cfg, dry_run=args.dry_run)

    async def _run() -> int:
        try:
            await runner.run_once()
            return 0
        except DataUnavailable as e:
            log.error("tick_aborted err=%s soft_fail=%s", e, cfg.app.soft_fail)
            await runner.notify_error(e)
            return 0 if cfg.app.soft_fail else 1
        finally:
            await runner.close()

    try:
        return asyncio.run(_run())
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        log.exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
