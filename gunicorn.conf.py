"""
Gunicorn configuration for the MFA Core API
"""
import multiprocessing
import os

# Server socket
bind = os.getenv("MFACORE_BIND", "127.0.0.1:8000")
backlog = 2048

# Worker processes
workers = int(os.getenv("MFACORE_WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
timeout = 120
keepalive = 5

# Logging; application loggers are configured in mfa_core.core.logging_config
accesslog = "-"
errorlog = "-"
loglevel = "info"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = "mfa-core"

# Server mechanics
daemon = False
capture_output = True
enable_stdio_inheritance = True

preload_app = True
graceful_timeout = 30
