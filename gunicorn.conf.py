"""
Gunicorn Configuration

Uvicorn workers serving the snapshot read API. Rebuild leases must use the
Redis backend when more than one worker accepts rebuild requests.
"""

import multiprocessing
import os

bind = os.getenv("BIND", "0.0.0.0:8000")
backlog = 2048

workers = int(os.getenv("WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
max_requests = 10000
max_requests_jitter = 1000
# Rebuild requests run inline and can take a while on large catalogs
timeout = 300
keepalive = 5
graceful_timeout = 30

proc_name = "commerce-snapshot-api"

errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = "-"
