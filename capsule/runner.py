from __future__ import annotations

import concurrent.futures as _fut
from typing import Any, Callable, Dict, List, Optional

from .events import CompletedEvent, EventSink, null_sink
from .pipeline import FLOWS, JobDescriptor, Pipeline
from .storage import Saver


class JobRunner:
    """Run pipelines on a thread pool.

    Each job owns its Pipeline (buffer, temp file, timing table); nothing
    mutable is shared between jobs except the sink, which must be
    thread-safe. The pool keeps digest/compression/cipher work off the
    caller's thread.
    """

    def __init__(self, *, max_workers: int = 4, sink: EventSink = null_sink, **pipeline_options: Any) -> None:
        self.sink = sink
        self.pipeline_options = pipeline_options
        self._pool = _fut.ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix="capsule")

    def __enter__(self) -> "JobRunner":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def submit(self, job: JobDescriptor, direction: str, **overrides: Any) -> "_fut.Future[Optional[CompletedEvent]]":
        if direction not in FLOWS:
            raise ValueError(f"unknown direction: {direction}")
        options = dict(self.pipeline_options)
        options.update(overrides)
        options.setdefault("sink", self.sink)
        pipeline = Pipeline(job, **options)
        return self._pool.submit(pipeline.run, direction)

    def run_all(
        self,
        jobs: List[JobDescriptor],
        direction: str,
        *,
        saver_for: Optional[Callable[[JobDescriptor], Saver]] = None,
    ) -> List[Dict[str, Any]]:
        """Run ``jobs`` concurrently and summarize each outcome.

        Returns one dict per job, in input order, with ``status`` set to
        ``ok``, ``cancelled`` or ``fail``. Failures keep the error kind and
        message; the ErrorEvent was already emitted by the pipeline.
        ``saver_for`` builds a per-job saver when outputs go to different places.
        """
        futures = []
        for job in jobs:
            overrides = {"saver": saver_for(job)} if saver_for is not None else {}
            futures.append((job, self.submit(job, direction, **overrides)))
        results: List[Dict[str, Any]] = []
        for job, fut in futures:
            res: Dict[str, Any] = {"job_id": job.job_id, "source": job.path, "status": "unknown"}
            try:
                done = fut.result()
            except Exception as exc:
                res["status"] = "fail"
                res["kind"] = getattr(exc, "kind", "error")
                res["message"] = str(exc)
            else:
                if done is None:
                    res["status"] = "cancelled"
                else:
                    res["status"] = "ok"
                    res["path"] = done.path
                    res["size_before"] = done.size_before
                    res["size_after"] = done.size_after
                    res["stage_timings"] = done.stage_timings
            results.append(res)
        return results
