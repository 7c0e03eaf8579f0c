"""Gunicorn configuration for the submission integrity service.

Usage:
    gunicorn main:app -c deploy/gunicorn.conf.py

Detection runs are short CPU bursts around I/O: paginated store reads and,
during backfill, file downloads bounded by ``DIGEST_TIMEOUT`` per file.
"""

import multiprocessing
import os

# ─── Server socket ──────────────────────────────────────────────

bind = os.getenv("BIND", "0.0.0.0:5000")
backlog = 512

# ─── Worker processes ───────────────────────────────────────────
#
# Async ASGI workers, one per core. Backfill concurrency is per worker
# (DIGEST_MAX_CONCURRENCY), so more workers also means more parallel
# downloads against file storage.

workers = int(os.getenv("WORKERS", min(multiprocessing.cpu_count(), 2)))
worker_class = "uvicorn.workers.UvicornWorker"

# ─── Timeouts ───────────────────────────────────────────────────
#
# A full-scope backfill can download hundreds of files; keep the worker
# timeout well above the slowest expected batch.

timeout = 300
graceful_timeout = 30
keepalive = 5

# ─── Worker recycling ──────────────────────────────────────────

max_requests = 2000
max_requests_jitter = 200

# ─── Logging ────────────────────────────────────────────────────

accesslog = "-"                     # stdout
errorlog = "-"                      # stderr
loglevel = os.getenv("LOG_LEVEL", "info")

# ─── Process naming ─────────────────────────────────────────────

proc_name = "submission-integrity"

# ─── Server hooks ───────────────────────────────────────────────


def on_starting(server):
    """Called just before the master process is initialized."""
    server.log.info(
        "Starting submission integrity service — workers=%d, timeout=%ds, bind=%s",
        workers,
        timeout,
        bind,
    )


def worker_exit(server, worker):
    """Called when a worker has been killed or exited."""
    server.log.info("Worker exit (pid: %s)", worker.pid)
