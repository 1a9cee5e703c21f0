import multiprocessing
import os

wsgi_app = "app.main:app"
bind = os.getenv("SCHEDULING_BIND", "127.0.0.1:8000")
# Multiple workers need CACHE_BACKEND=redis so session view invalidation is shared.
workers = int(os.getenv("SCHEDULING_WORKERS", (multiprocessing.cpu_count() * 2) + 1))
worker_class = "uvicorn.workers.UvicornWorker"
# Schedule creation may wait on the holiday feed once per Buddhist-era year.
timeout = 60
graceful_timeout = 30
keepalive = 5
loglevel = "info"
accesslog = "-"
errorlog = "-"
