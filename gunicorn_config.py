"""Gunicorn configuration: one worker that owns the NodePool controller."""
import sys

# Gunicorn config variables
bind = "0.0.0.0:8080"
workers = 1
timeout = 120
worker_class = "sync"
preload_app = False  # Don't preload - the controller threads must start after fork


def post_worker_init(worker):
    """Called just after a worker has initialized the application."""
    try:
        app = worker.wsgi
        controller = app.config.get('controller') if hasattr(app, 'config') else None
        if controller is None:
            print(f"[Worker {worker.pid}] WARNING: No controller found in app.config", file=sys.stderr, flush=True)
            return
        if not controller.running:
            controller.start()
        print(f"[Worker {worker.pid}] NodePool controller running", file=sys.stderr, flush=True)
    except Exception as e:
        print(f"[Worker {worker.pid}] ERROR in post_worker_init: {e}", file=sys.stderr, flush=True)
        import traceback
        traceback.print_exc(file=sys.stderr)
        raise


def worker_exit(server, worker):
    """Stop the controller threads before the worker goes away."""
    app = getattr(worker, "wsgi", None)
    controller = app.config.get('controller') if app is not None else None
    if controller is not None:
        controller.stop()
