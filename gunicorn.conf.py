"""
Gunicorn configuration.
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Reconciliation waits on Shopify calls and partner locks; sync workers are enough
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = 120
keepalive = 5

accesslog = '-'
errorlog = '-'
loglevel = os.getenv('LOG_LEVEL', 'info').lower()
capture_output = True

proc_name = 'prohealth-partners'

preload_app = True
graceful_timeout = 30


def on_starting(server):
    server.log.info('Starting ProHealth partner server')


def on_exit(server):
    server.log.info('ProHealth partner server shutting down')
