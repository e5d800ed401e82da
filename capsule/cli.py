from __future__ import annotations

import os
import sys
import time
import argparse
import threading
import json as _json
import getpass as _getpass

from typing import Dict, List, Optional

from capsule.constants import STAGES
from capsule.errors import CapsuleError
from capsule.events import CompletedEvent, ErrorEvent, Event, ProgressEvent
from capsule.pipeline import SEAL, UNSEAL, JobDescriptor, new_job_id
from capsule.runner import JobRunner
from capsule.storage import EXISTS_POLICIES, DirectorySaver


class ConsoleReporter:
    """Event sink that renders job events as terminal lines.

    Progress goes to stdout (suppressed with ``quiet``), errors to stderr.
    Safe to share between worker threads.
    """

    def __init__(self, labels: Dict[str, str], *, quiet: bool = False, stream=None, err_stream=None) -> None:
        self.labels = labels
        self.quiet = quiet
        self.stream = stream if stream is not None else sys.stdout
        self.err_stream = err_stream if err_stream is not None else sys.stderr
        self._lock = threading.Lock()
        self._last_pct: Dict[tuple, int] = {}

    def _label(self, job_id: str) -> str:
        return self.labels.get(job_id, job_id)

    def __call__(self, event: Event) -> None:
        with self._lock:
            if isinstance(event, ProgressEvent):
                self._on_progress(event)
            elif isinstance(event, ErrorEvent):
                print(f"Error: {self._label(event.job_id)}: {event.message} [{event.kind}]", file=self.err_stream)
                self._forget(event.job_id)
            elif isinstance(event, CompletedEvent):
                self._on_completed(event)
                self._forget(event.job_id)

    def _forget(self, job_id: str) -> None:
        for key in [k for k in self._last_pct if k[0] == job_id]:
            del self._last_pct[key]

    def _on_progress(self, ev: ProgressEvent) -> None:
        if self.quiet:
            return
        label = self._label(ev.job_id)
        if ev.indeterminate:
            print(f"    working {ev.stage}: {label}", file=self.stream)
            return
        pct = 100.0 if ev.total == 0 else ev.current * 100.0 / ev.total
        # one line per whole percent is plenty for large files
        key = (ev.job_id, ev.stage)
        if ev.current not in (0, ev.total) and int(pct) == self._last_pct.get(key):
            return
        self._last_pct[key] = int(pct)
        print(f" {pct:6.2f}% {ev.stage}: {label}", file=self.stream)

    def _on_completed(self, ev: CompletedEvent) -> None:
        timings = ev.stage_timings
        spans = []
        for stage in STAGES:
            t = timings.get(stage) or {}
            if t.get("end"):
                spans.append(f"{stage}={t['end'] - t['start']}ms")
        started = min((t["start"] for t in timings.values() if t.get("start")), default=0)
        ended = max((t["end"] for t in timings.values() if t.get("end")), default=0)
        dt = max(0.000001, (ended - started) / 1000.0)
        mib = ev.size_before / (1024.0 * 1024.0)
        print(
            f"Done: {self._label(ev.job_id)} -> {ev.path}; "
            f"{ev.size_before} -> {ev.size_after} bytes; {mib:.2f} MiB in {dt:.1f}s; "
            f"{mib / dt:.2f} MiB/s ({' '.join(spans)})",
            file=self.stream,
        )


def _parse_bit(value: str) -> int:
    try:
        bit = int(value, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid byte value: {value!r}")
    if not 0 <= bit <= 0xFF:
        raise argparse.ArgumentTypeError("bit must be in 0..255")
    return bit


def _resolve_secret(secret: Optional[str]) -> str:
    if secret is not None:
        return secret
    env = os.environ.get("CAPSULE_SECRET")
    if env:
        return env
    return _getpass.getpass("Secret: ")


def _run_jobs(
    direction: str,
    inputs: List[str],
    *,
    secret: str,
    bit: int,
    outdir: Optional[str],
    exists: str,
    jobs: int,
    legacy_stride: bool,
    quiet: bool,
    as_json: bool,
) -> bool:
    descriptors = [JobDescriptor(path=p, secret=secret, bit=bit, job_id=new_job_id()) for p in inputs]
    labels = {d.job_id: os.path.basename(d.path) for d in descriptors}
    reporter = ConsoleReporter(labels, quiet=quiet or as_json)

    def _saver_for(job: JobDescriptor) -> DirectorySaver:
        target = outdir if outdir is not None else os.path.dirname(os.path.abspath(job.path))
        return DirectorySaver(target, exists=exists)

    with JobRunner(max_workers=jobs, sink=reporter, legacy_stride=legacy_stride) as runner:
        results = runner.run_all(descriptors, direction, saver_for=_saver_for)

    ok = sum(1 for r in results if r["status"] == "ok")
    skipped = sum(1 for r in results if r["status"] == "cancelled")
    failed = sum(1 for r in results if r["status"] == "fail")
    if as_json:
        print(_json.dumps({"results": results, "ok": ok, "skipped": skipped, "failed": failed}))
    else:
        for r in results:
            if r["status"] == "cancelled":
                print(f"    skipping: {r['source']} (exists)")
        if len(results) > 1 or failed:
            print(f"Summary: ok={ok} skipped={skipped} failed={failed}")
    return failed == 0


def cmd_seal(
    inputs: List[str],
    *,
    secret: str,
    bit: int,
    outdir: Optional[str] = None,
    exists: str = "rename",
    jobs: int = 4,
    quiet: bool = False,
    as_json: bool = False,
) -> bool:
    """Seal each input file into ``<name>.enc``.

    Args:
        inputs: Source file paths; each becomes its own job.
        secret: Secret hashed into the AES-256 key.
        bit: Single-byte XOR key (0..255).
        outdir: Output directory; defaults to each input's own directory.
        exists: Policy when the output name is taken (rename/overwrite/skip/fail).
        jobs: Maximum parallel jobs.
        quiet: Only print summaries.
        as_json: Print a JSON summary instead of text.

    Returns:
        True when no job failed.
    """
    t0 = time.time()
    ok = _run_jobs(
        SEAL, inputs, secret=secret, bit=bit, outdir=outdir, exists=exists, jobs=jobs,
        legacy_stride=False, quiet=quiet, as_json=as_json,
    )
    if not as_json and not quiet and len(inputs) > 1:
        print(f"Sealed {len(inputs)} file(s) in {time.time() - t0:.1f}s")
    return ok


def cmd_unseal(
    inputs: List[str],
    *,
    secret: str,
    bit: int,
    outdir: Optional[str] = None,
    exists: str = "rename",
    jobs: int = 4,
    legacy_stride: bool = False,
    quiet: bool = False,
    as_json: bool = False,
) -> bool:
    """Unseal artifacts, verify their digest and write the recovered files.

    The output name drops the ``.enc`` suffix and gains the extension
    detected from the recovered content, if any. ``legacy_stride`` reads
    artifacts written by the older client's XOR loop.
    """
    t0 = time.time()
    ok = _run_jobs(
        UNSEAL, inputs, secret=secret, bit=bit, outdir=outdir, exists=exists, jobs=jobs,
        legacy_stride=legacy_stride, quiet=quiet, as_json=as_json,
    )
    if not as_json and not quiet and len(inputs) > 1:
        print(f"Unsealed {len(inputs)} file(s) in {time.time() - t0:.1f}s")
    return ok


def _add_job_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--secret", help="Secret used to derive the AES key (prompted, or $CAPSULE_SECRET, when omitted)")
    p.add_argument("--bit", type=_parse_bit, required=True, help="Single-byte XOR key, e.g. 42 or 0x2a")
    p.add_argument("--outdir", help="Output directory (default: next to each input)")
    p.add_argument(
        "--exists",
        choices=list(EXISTS_POLICIES),
        default="rename",
        help="What to do if the output file exists (default: rename, appends ' (n)')",
    )
    p.add_argument("--jobs", "-j", type=int, default=4, help="Parallel jobs (default 4)")
    p.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")
    p.add_argument("--json", action="store_true", help="Emit JSON result summary")


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="capsule",
        description="Seal files into opaque artifacts (SHA-1 + deflate + AES-256-CBC + XOR) and back",
        epilog="The IV is fixed and the XOR key is one byte: this is obfuscation for compatibility, not modern encryption.",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_seal = sub.add_parser("seal", help="Seal files")
    ap_seal.add_argument("inputs", nargs="+", help="Input files")
    _add_job_arguments(ap_seal)

    ap_unseal = sub.add_parser("unseal", help="Unseal artifacts")
    ap_unseal.add_argument("inputs", nargs="+", help="Sealed .enc files")
    _add_job_arguments(ap_unseal)
    ap_unseal.add_argument(
        "--legacy-stride",
        action="store_true",
        help="Reproduce the older client's XOR stride (needed for artifacts it sealed)",
    )

    args = ap.parse_args(argv)
    try:
        secret = _resolve_secret(args.secret)
        if args.cmd == "seal":
            success = cmd_seal(
                args.inputs, secret=secret, bit=args.bit, outdir=args.outdir, exists=args.exists,
                jobs=args.jobs, quiet=args.quiet, as_json=args.json,
            )
        elif args.cmd == "unseal":
            success = cmd_unseal(
                args.inputs, secret=secret, bit=args.bit, outdir=args.outdir, exists=args.exists,
                jobs=args.jobs, legacy_stride=args.legacy_stride, quiet=args.quiet, as_json=args.json,
            )
        else:
            raise RuntimeError("Unknown command")
    except (CapsuleError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    if not success:
        sys.exit(2)


if __name__ == "__main__":
    main()
