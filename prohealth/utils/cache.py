"""
Cache utilities.

Provides Redis-backed caching with fallback to simple in-memory caching.
Uses Flask-Caching for integration with Flask app.

Usage:
    from prohealth.utils.cache import cache

    @cache.memoize(timeout=60)
    def pending_count(shop_domain):
        ...

Environment Variables:
    REDIS_URL: Redis connection URL (e.g., redis://localhost:6379/0)
              Falls back to simple cache if not set.
"""
import os
import logging
from flask_caching import Cache

logger = logging.getLogger(__name__)

# Global cache instance - initialized in init_cache()
cache = Cache()


def init_cache(app):
    """
    Initialize Flask-Caching with Redis or fall back to simple cache.

    An explicit CACHE_TYPE in the app config wins (tests use NullCache).

    Returns:
        bool: True if Redis is configured, False otherwise
    """
    if app.config.get('CACHE_TYPE'):
        cache.init_app(app)
        return False

    redis_url = os.getenv('REDIS_URL')

    if redis_url:
        app.config['CACHE_TYPE'] = 'RedisCache'
        app.config['CACHE_REDIS_URL'] = redis_url
        app.config['CACHE_DEFAULT_TIMEOUT'] = 300
        app.config['CACHE_KEY_PREFIX'] = 'prohealth:'

        cache.init_app(app)
        logger.info('Redis cache configured: %s', redis_url.split('@')[-1])
        return True

    app.config['CACHE_TYPE'] = 'SimpleCache'
    app.config['CACHE_DEFAULT_TIMEOUT'] = 300

    cache.init_app(app)
    logger.info('Using simple in-memory cache (no Redis)')
    return False


def cache_key(*args, **kwargs):
    """
    Generate a cache key from arguments.

        key = cache_key('shop_currency', shop='demo.myshopify.com')
    """
    parts = list(args)
    for k, v in sorted(kwargs.items()):
        parts.append(f'{k}={v}')
    return ':'.join(str(p) for p in parts)
