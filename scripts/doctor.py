from __future__ import annotations

import argparse
import sys
from pathlib import Path

from cpu_analyser.core.config import load_config
from cpu_analyser.core.exceptions import CpuAnalyserError
from cpu_analyser.monitoring.process_table import (
    ProcessSnapshotReader,
    ProcfsSnapshotReader,
    PsutilSnapshotReader,
)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="doctor")
    p.add_argument("--config", type=str, default=None)
    return p.parse_args(argv)


def _check_reader(reader: ProcessSnapshotReader) -> bool:
    try:
        snap = reader.snapshot()
    except CpuAnalyserError as exc:
        print(f"[FAIL] {reader.backend}: {exc}")
        return False
    print(f"[OK] {reader.backend}: {len(snap)} processes, uptime={snap.uptime_seconds:.2f}s")
    return True


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    try:
        cfg = load_config(args.config)
    except CpuAnalyserError as exc:
        print(f"[FAIL] Config: {exc}")
        return 2
    print("[OK] Config loaded")

    hz = cfg.sampling.resolved_ticks_per_second()
    print(f"[OK] Clock ticks per second: {hz}")

    readers: list[ProcessSnapshotReader] = [PsutilSnapshotReader(ticks_per_second=hz)]
    proc_root = Path(cfg.source.proc_root)
    if (proc_root / "uptime").exists():
        readers.insert(0, ProcfsSnapshotReader(proc_root=proc_root))
    else:
        print(f"[WARN] {proc_root} is not a procfs mount, procfs backend unavailable")

    ok = all([_check_reader(r) for r in readers])
    return 0 if ok else 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
