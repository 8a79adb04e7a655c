"""
ProHealth partner program entry point.
"""
import logging
import os
import sys

from prohealth import create_app

logger = logging.getLogger('prohealth.run')

config_name = os.getenv('FLASK_ENV', 'production')

try:
    app = create_app(config_name)
except Exception:
    logger.exception(f'Failed to create app with config {config_name}')
    sys.exit(1)

logger.info(f'App created ({config_name}), {len(list(app.url_map.iter_rules()))} routes')

if __name__ == '__main__':
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=config_name == 'development'
    )
