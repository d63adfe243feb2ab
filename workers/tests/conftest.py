import os

os.environ.setdefault("FC_WORKER_OTEL_ENABLED", "false")
