"""Runs the outbound queue worker inside a small web app so the host can probe it."""

from __future__ import annotations

import asyncio
import contextlib
import os

from fastapi import FastAPI

from prima import worker

app = FastAPI(title="PRIMA queue worker", docs_url=None, redoc_url=None)
_worker_task: asyncio.Task | None = None


@app.get("/health")
def health() -> dict:
    running = _worker_task is not None and not _worker_task.done()
    return {
        "status": "ok" if running else "stopped",
        "worker_id": worker.WORKER_ID,
        "last_cycle": dict(worker.LAST_CYCLE),
    }


@app.on_event("startup")
async def _start_worker() -> None:
    global _worker_task
    _worker_task = asyncio.create_task(worker.worker_loop())


@app.on_event("shutdown")
async def _stop_worker() -> None:
    if _worker_task:
        _worker_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _worker_task


def main() -> None:
    import uvicorn

    uvicorn.run(
        "prima.worker_service:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8081")),
    )


if __name__ == "__main__":
    main()
