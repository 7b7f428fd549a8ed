"""Gunicorn settings for the Stockbook API, overridable through GUNICORN_* variables."""
import os

wsgi_app = "app:app"
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:5000")

workers = int(os.getenv("GUNICORN_WORKERS", "2"))
timeout = int(os.getenv("GUNICORN_TIMEOUT", "30"))

accesslog = os.getenv("GUNICORN_ACCESS_LOGFILE", "-")
errorlog = os.getenv("GUNICORN_ERROR_LOGFILE", "-")
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")
# matches the req=<id> field in the application log
access_log_format = '%(h)s "%(r)s" %(s)s %(b)s %(M)sms req=%({x-request-id}o)s'

forwarded_allow_ips = os.getenv("GUNICORN_FORWARDED_ALLOW_IPS", "*")
