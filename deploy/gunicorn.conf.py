"""Gunicorn configuration for the Nexus study service.

Usage:
    gunicorn main:app -c deploy/gunicorn.conf.py

Realtime rooms and presence live in process memory, so the service runs
one async worker; that worker holds every WebSocket connection.
"""

import os

# ─── Server socket ──────────────────────────────────────────────

bind = os.getenv("BIND", "0.0.0.0:5001")
backlog = 2048

# ─── Worker processes ───────────────────────────────────────────

workers = 1
worker_class = "uvicorn.workers.UvicornWorker"

# ─── Timeouts ───────────────────────────────────────────────────
#
# Study-session initialization makes two model calls (lesson, quiz) and
# other requests may poll up to ~10s behind it.

timeout = 240
graceful_timeout = 60
keepalive = 120

# ─── Logging ────────────────────────────────────────────────────

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")

proc_name = "nexus-study-agents"


def on_starting(server):
    server.log.info("Starting Nexus study service: timeout=%ds, bind=%s", timeout, bind)


def worker_exit(server, worker):
    server.log.info("Worker exit (pid: %s)", worker.pid)
