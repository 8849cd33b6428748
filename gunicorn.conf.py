"""
Gunicorn configuration for the Bhutan Tours booking API

    gunicorn -c gunicorn.conf.py app.main:app
"""
import os

bind = os.getenv("TOURBOOK_BIND", "127.0.0.1:8000")

# Admin login codes are held in worker memory, so more than one worker needs sticky sessions.
workers = int(os.getenv("TOURBOOK_WORKERS", "1"))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = int(os.getenv("TOURBOOK_WORKER_TIMEOUT", "60"))
graceful_timeout = 30
keepalive = 5

# "-" logs to stdout/stderr; the app writes its own rotating file when TOURBOOK_LOG_DIR is set
accesslog = os.getenv("TOURBOOK_ACCESS_LOG", "-")
errorlog = os.getenv("TOURBOOK_ERROR_LOG", "-")
loglevel = os.getenv("TOURBOOK_LOG_LEVEL", "info").lower()
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(D)sus'

proc_name = "tourbook-api"
pidfile = os.getenv("TOURBOOK_PIDFILE")
capture_output = True

preload_app = True
