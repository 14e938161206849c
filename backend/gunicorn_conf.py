# backend/gunicorn_conf.py

# Gunicorn config file
# Usage: gunicorn -c gunicorn_conf.py queuebot.main:app

import os

# Basic configuration
bind = os.getenv("BIND", "0.0.0.0:8000")
workers = int(os.getenv("WORKERS", "2"))
worker_class = "uvicorn.workers.UvicornWorker"

# Webhook handling waits on MongoDB and UltraMsg; keep in line with the
# request timeout middleware.
timeout = 35
graceful_timeout = 30

# Settings for running behind a reverse proxy like Nginx
forwarded_allow_ips = "*"

# --- Logging ---
# Send access and error logs to stdout and stderr
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")
