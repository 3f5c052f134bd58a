#!/usr/bin/env python3

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from cpuburn.config import resolve_session
from cpuburn.errors import ConfigurationError, SinkWriteError
from cpuburn.logs import configure_logging, console
from cpuburn.orchestrator import Orchestrator

EXIT_OK = 0
EXIT_SINK = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="cpu-burn",
        description="Max out CPU to observe power/thermal behavior on Linux (Pi/CM modules friendly)",
        epilog="Logs: timestamp,temp_C,freq_khz,load1,throttle_hex (throttle on Pi if vcgencmd present)",
    )
    ap.add_argument("-t", "--duration", type=str, default=None, help="Seconds to run; 0 = until interrupted")
    ap.add_argument("-w", "--workers", type=str, default=None, help="Worker count; 0 = one per online CPU")
    ap.add_argument("-l", "--log", type=Path, default=None, help="Output CSV (default cpu_burn_<timestamp>.csv)")
    ap.add_argument("-g", "--no-governor", action="store_true", help="Don't change the CPU governor")
    ap.add_argument("-c", "--config", type=Path, default=None, help="YAML file with run settings")
    ap.add_argument("--fallback-method", choices=["counter", "matrix"], default=None,
                    help="Built-in worker body when stress-ng is missing")
    ap.add_argument("--sysfs-root", type=Path, default=None, help="Override sysfs root (mock trees)")
    ap.add_argument("--procfs-root", type=Path, default=None, help="Override procfs root (mock trees)")
    ap.add_argument("--no-meta", action="store_true", help="Skip the .meta.json sidecar")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        session = resolve_session(
            duration=args.duration,
            workers=args.workers,
            log=args.log,
            set_governor=False if args.no_governor else None,
            sysfs_root=args.sysfs_root,
            procfs_root=args.procfs_root,
            fallback_method=args.fallback_method,
            write_meta=False if args.no_meta else None,
            config_path=args.config,
        )
    except ConfigurationError as exc:
        console.print(f"[red]{exc}[/red]")
        return EXIT_CONFIG

    console.print(f"Cores/workers: {session.workers}")
    console.print(f"Duration: {f'{session.duration_s}s' if session.bounded else 'until Ctrl+C'}")

    try:
        result = Orchestrator(session).run()
    except ConfigurationError as exc:
        console.print(f"[red]{exc}[/red]")
        return EXIT_CONFIG
    except SinkWriteError as exc:
        console.print(f"[red]{exc}[/red]")
        return EXIT_SINK

    how = "interrupted" if result.cancelled else "done"
    console.print(f"[green]{how.capitalize()}.[/green] {result.rows} samples in {result.log_path}")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
