"""Gunicorn configuration for the netemu controller."""
import sys

# Gunicorn config variables
bind = "0.0.0.0:8080"
# Managed topologies and their watch threads live in process memory,
# so a single worker owns them all.
workers = 1
threads = 4
timeout = 120
worker_class = "gthread"
preload_app = False

def post_worker_init(worker):
    """Called just after a worker has initialized the application."""
    app = getattr(worker, "app", None)
    if app is None:
        print(f"[Worker {worker.pid}] WARNING: App not found", file=sys.stderr, flush=True)
        return
    print(f"[Worker {worker.pid}] netemu controller ready", file=sys.stderr, flush=True)
