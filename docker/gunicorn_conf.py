import os

from cartmerge.config import Settings

settings = Settings()

wsgi_app = "cartmerge.main:app"
bind = f"0.0.0.0:{os.getenv('PORT','8000')}"
# The JSON store is last-writer-wins per order; keep concurrent writers few
workers = int(os.getenv("WEB_CONCURRENCY", "2")) or 1
worker_class = "uvicorn.workers.UvicornWorker"
# A request may wait out a full persist timeout plus fetch and audit I/O
timeout = max(30, int(settings.persist_timeout_seconds * 3))
graceful_timeout = max(15, int(settings.persist_timeout_seconds * 2))
keepalive = 5
accesslog = "-"
errorlog = "-"
loglevel = settings.log_level.lower()
