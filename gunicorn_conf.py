import os

wsgi_app = "timechat.main:app"
bind = os.environ.get("BIND", "0.0.0.0:8000")
worker_class = "uvicorn.workers.UvicornWorker"
# Rooms are locked and sockets routed in-process; more workers would split them
workers = 1
# WebSocket connections stay open far longer than a request
timeout = 0
graceful_timeout = 30
keepalive = 75
loglevel = os.environ.get("LOG_LEVEL", "info")
accesslog = os.environ.get("GUNICORN_ACCESS_LOG", "-")
errorlog = os.environ.get("GUNICORN_ERROR_LOG", "-")
