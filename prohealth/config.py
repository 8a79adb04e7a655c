"""
Configuration management for the ProHealth partner program.
"""
import os
from dotenv import load_dotenv

load_dotenv()


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Shopify app credentials
    SHOPIFY_API_KEY = os.getenv('SHOPIFY_CLIENT_ID', os.getenv('SHOPIFY_API_KEY', ''))
    SHOPIFY_API_SECRET = os.getenv('SHOPIFY_CLIENT_SECRET', os.getenv('SHOPIFY_API_SECRET', ''))
    SHOPIFY_API_VERSION = os.getenv('SHOPIFY_API_VERSION', '2025-01')
    APP_URL = os.getenv('APP_URL', 'http://localhost:5000')

    # Edit-mode gate
    ADMIN_PASSWORD = os.getenv('ADMIN_PASSWORD', '')
    EDIT_TOKEN_TTL_MINUTES = int(os.getenv('EDIT_TOKEN_TTL_MINUTES', '30'))

    # Credit program defaults (shop settings override these)
    CREDIT_THRESHOLD = os.getenv('CREDIT_THRESHOLD', '500')
    CREDIT_AMOUNT = os.getenv('CREDIT_AMOUNT', '10')
    CREDIT_CURRENCY = os.getenv('CREDIT_CURRENCY', 'EUR')

    # Per-partner reconciliation lock
    PARTNER_LOCK_TIMEOUT = int(os.getenv('PARTNER_LOCK_TIMEOUT', '30'))  # seconds a lock stays valid
    PARTNER_LOCK_WAIT = float(os.getenv('PARTNER_LOCK_WAIT', '10'))  # seconds to wait for a lock

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///prohealth_dev.db'  # SQLite fallback for local dev
    )


class ProductionConfig(BaseConfig):
    """Production configuration."""
    DEBUG = False

    _db_url = os.getenv('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        # SQLAlchemy requires postgresql:// not postgres://
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_DATABASE_URI = _db_url

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 5,
        'pool_recycle': 300,
        'pool_pre_ping': True,  # Verify connections before using
    }

    # Override SECRET_KEY for production - must be set via environment
    _secret_key = os.getenv('SECRET_KEY', '')

    @classmethod
    def validate_secret_key(cls) -> str:
        """
        Validate SECRET_KEY in production environment.

        Raises:
            RuntimeError: If SECRET_KEY is missing, empty, or contains unsafe values
        """
        if not cls._secret_key:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY environment variable is not set!\n"
                "Production deployments MUST have a secure SECRET_KEY.\n"
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )

        insecure_patterns = ['dev', 'change', 'default', 'test', 'secret', 'password']
        lower_key = cls._secret_key.lower()
        for pattern in insecure_patterns:
            if pattern in lower_key:
                raise RuntimeError(
                    f"CRITICAL: SECRET_KEY contains '{pattern}' which suggests it's not secure!\n"
                    "Production deployments require a unique, random SECRET_KEY."
                )

        if len(cls._secret_key) < 32:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY is too short (minimum 32 characters required)!"
            )

        return cls._secret_key

    @classmethod
    def validate_admin_password(cls) -> str:
        """The edit-mode password is mandatory once deployed."""
        if not cls.ADMIN_PASSWORD:
            raise RuntimeError(
                "CRITICAL: ADMIN_PASSWORD environment variable is not set!\n"
                "Edit mode cannot be unlocked without it."
            )
        return cls.ADMIN_PASSWORD

    SECRET_KEY = _secret_key  # Will be validated at app startup


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SECRET_KEY = 'testing-secret-key'
    SHOPIFY_API_KEY = 'test-api-key'
    SHOPIFY_API_SECRET = 'test-api-secret'
    ADMIN_PASSWORD = 'open-sesame'
    CREDIT_THRESHOLD = '500'
    CREDIT_AMOUNT = '10'
    PARTNER_LOCK_WAIT = 0.2
    CACHE_TYPE = 'NullCache'


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}


def get_config(config_name: str = 'development'):
    """Get configuration class by name."""
    return config_map.get(config_name, DevelopmentConfig)


def validate_config(config_name: str = 'development') -> None:
    """
    Validate configuration before app startup.

    In production, this ensures SECRET_KEY and ADMIN_PASSWORD are configured.

    Raises:
        RuntimeError: If validation fails in production
    """
    if config_name == 'production':
        ProductionConfig.validate_secret_key()
        ProductionConfig.validate_admin_password()
