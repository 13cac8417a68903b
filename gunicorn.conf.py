# gunicorn.conf.py
import multiprocessing
import os

# import path to the app factory (PYTHONPATH=/app/src in the image)
wsgi_app = "SKPI.main:create_app"
factory = True

# networking
host = os.getenv("HOST", "0.0.0.0")
port = int(os.getenv("PORT", "8000"))
bind = f"{host}:{port}"

# workers
# every worker builds its own app; keep KPI_SCHEDULER_ENABLED off here and run
# `skpi run-scheduler` as a single separate process instead
workers = int(os.getenv("WEB_CONCURRENCY", multiprocessing.cpu_count() + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_tmp_dir = "/dev/shm"

# timeouts (a manual recalculation holds the request until the run ends)
timeout = int(os.getenv("GUNICORN_TIMEOUT", "120"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))

# logging
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")

LOG_FMT = "%(asctime)s %(levelname)s %(name)s %(message)s %(process)d %(module)s"
logconfig_dict = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "fmt": LOG_FMT,
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "stream": "ext://sys.stdout",
        }
    },
    "root": {"level": os.getenv("LOG_LEVEL", "INFO").upper(), "handlers": ["console"]},
    "loggers": {
        "SKPI":           {"level": os.getenv("SKPI_LOG_LEVEL", "INFO").upper()},
        "uvicorn":        {"level": "INFO", "handlers": ["console"], "propagate": False},
        "uvicorn.error":  {"level": "INFO", "handlers": ["console"], "propagate": False},
        "uvicorn.access": {"level": "INFO", "handlers": ["console"], "propagate": False},
        "sqlalchemy.engine": {"level": "WARNING"},
    },
}
