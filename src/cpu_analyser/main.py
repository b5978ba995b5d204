from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import Any

from cpu_analyser.core.config import load_config
from cpu_analyser.core.exceptions import ConfigError
from cpu_analyser.core.utils import platform_summary, setup_logging
from cpu_analyser.engine.sampler import SamplingLoop
from cpu_analyser.monitoring.process_table import build_snapshot_reader
from cpu_analyser.reporting.table import StreamReporter


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = _ArgumentParser(prog="cpu-analyser")
    p.add_argument("interval", type=str, help="Sampling interval in whole seconds (> 0)")
    p.add_argument("threshold", type=str, help="Report processes above this CPU percentage (>= 0)")
    p.add_argument("--config", type=str, default=None, help="Path to config.yaml")
    p.add_argument("--log-level", type=str, default=None)
    p.add_argument("--log-dir", type=str, default=None, help="Also write rotating text/JSONL logs here")
    p.add_argument("--format", choices=["table", "json"], default=None)
    p.add_argument("--source", choices=["auto", "procfs", "psutil"], default=None)
    p.add_argument("--proc-root", type=str, default=None)
    p.add_argument("--max-processes", type=str, default=None)
    return p.parse_args(argv)


def _cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {
        "sampling": {"interval_seconds": args.interval, "threshold_percent": args.threshold},
    }
    source: dict[str, Any] = {}
    if args.source is not None:
        source["backend"] = args.source
    if args.proc_root is not None:
        source["proc_root"] = args.proc_root
    if args.max_processes is not None:
        source["max_processes"] = args.max_processes
    if source:
        overrides["source"] = source
    if args.format is not None:
        overrides["report"] = {"format": args.format}
    log_cfg: dict[str, Any] = {}
    if args.log_level is not None:
        log_cfg["level"] = args.log_level
    if args.log_dir is not None:
        log_cfg["log_dir"] = args.log_dir
    if log_cfg:
        overrides["logging"] = log_cfg
    return overrides


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    try:
        config = load_config(args.config, overrides=_cli_overrides(args))
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1

    setup_logging(config.logging.level, log_dir=config.logging.log_dir)
    log = logging.getLogger("cpu_analyser")
    log.info("starting", extra={"platform": dict(platform_summary()), "config": config.model_dump()})

    ticks_per_second = config.sampling.resolved_ticks_per_second()
    reader = build_snapshot_reader(config.source, ticks_per_second=ticks_per_second)
    reporter = StreamReporter(
        interval_seconds=config.sampling.interval_seconds,
        threshold_percent=config.sampling.threshold_percent,
        fmt=config.report.format,
    )
    loop = SamplingLoop(
        reader=reader,
        reporter=reporter,
        interval_seconds=config.sampling.interval_seconds,
        threshold_percent=config.sampling.threshold_percent,
        ticks_per_second=ticks_per_second,
    )

    stop_requested = False

    def _handle_sig(signum: int, _frame: object) -> None:
        nonlocal stop_requested
        if stop_requested:
            return
        stop_requested = True
        log.warning("shutdown requested", extra={"signal": signum})
        loop.request_stop()

    signal.signal(signal.SIGINT, _handle_sig)
    signal.signal(signal.SIGTERM, _handle_sig)

    log.info("sampling", extra={"backend": reader.backend, "ticks_per_second": ticks_per_second})
    loop.run()

    log.info("stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
