import os
import secrets
from dotenv import load_dotenv
from typing import Optional

# Find the absolute path of the root directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load the .env file from the root directory
load_dotenv(os.path.join(basedir, '.env'))


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid"""
    pass


class Config:
    """
    Base configuration class. Contains default configuration settings
    and settings applicable to all environments.
    """
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    FLASK_ENV = os.environ.get('FLASK_ENV')

    @classmethod
    def validate_required_config(cls) -> None:
        """Validate that all required configuration is present"""
        if os.environ.get('FLASK_ENV') == 'testing' or os.environ.get('SKIP_ENV_VALIDATION'):
            return

        required_vars = [
            'FACEBOOK_APP_SECRET',
            'WEBHOOK_VERIFY_TOKEN',
            'NVIDIA_API_KEY',
            'ADMIN_API_TOKEN',
        ]

        missing_vars = [var for var in required_vars if not os.environ.get(var)]
        if missing_vars:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing_vars)}"
            )

    @staticmethod
    def get_required_env(key: str) -> str:
        """Get required environment variable or raise error"""
        value = os.environ.get(key)
        if not value:
            raise ConfigurationError(f"Required environment variable {key} is not set")
        return value

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'leads.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Facebook webhooks and Graph API
    FACEBOOK_APP_SECRET = os.environ.get('FACEBOOK_APP_SECRET')
    WEBHOOK_VERIFY_TOKEN = os.environ.get('WEBHOOK_VERIFY_TOKEN')
    GRAPH_API_VERSION = os.environ.get('GRAPH_API_VERSION', 'v24.0')
    GRAPH_API_TIMEOUT = int(os.environ.get('GRAPH_API_TIMEOUT', '30'))

    # Chat-completion model endpoint
    LLM_API_KEY = os.environ.get('NVIDIA_API_KEY')
    LLM_API_BASE = os.environ.get('LLM_API_BASE', 'https://integrate.api.nvidia.com/v1')
    LLM_REQUEST_TIMEOUT = int(os.environ.get('LLM_REQUEST_TIMEOUT', '60'))
    DEFAULT_AI_MODEL = os.environ.get('DEFAULT_AI_MODEL', 'meta/llama-3.1-8b-instruct')

    # Lead processing
    MESSAGE_HISTORY_LIMIT = int(os.environ.get('MESSAGE_HISTORY_LIMIT', '20'))
    BATCH_ANALYSIS_LIMIT = int(os.environ.get('BATCH_ANALYSIS_LIMIT', '50'))

    # Ads Insights sync
    AD_METRICS_DATE_PRESET = os.environ.get('AD_METRICS_DATE_PRESET', 'last_30d')
    AD_METRICS_LOOKBACK_DAYS = int(os.environ.get('AD_METRICS_LOOKBACK_DAYS', '7'))
    AD_METRICS_SYNC_INTERVAL = float(os.environ.get('AD_METRICS_SYNC_INTERVAL', '21600'))

    # Admin API
    ADMIN_API_TOKEN = os.environ.get('ADMIN_API_TOKEN')

    # Celery picks these up through celery_config
    CELERY_BROKER_URL = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL') or 'redis://redis:6379/0'

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Application settings
    MAX_CONTENT_LENGTH = 2 * 1024 * 1024  # webhook bodies are small
    JSON_SORT_KEYS = False

    @classmethod
    def init_app(cls, app):
        """Initialize application with this config"""
        pass


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        Config.SQLALCHEMY_DATABASE_URI
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    """Testing environment configuration"""
    TESTING = True
    DEBUG = True

    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    FACEBOOK_APP_SECRET = 'test-app-secret'
    WEBHOOK_VERIFY_TOKEN = 'test-verify-token'
    LLM_API_KEY = 'test-llm-key'
    ADMIN_API_TOKEN = 'test-admin-token'

    CELERY_BROKER_URL = 'memory://'
    CELERY_RESULT_BACKEND = 'cache+memory://'


class ProductionConfig(Config):
    """Production environment configuration"""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')

    REDIS_URL = os.environ.get('REDIS_URL', '')
    CELERY_BROKER_URL = os.environ.get('REDIS_URL', '')
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL', '')

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization"""
        Config.init_app(app)

        if not app.config.get('SQLALCHEMY_DATABASE_URI'):
            app.config['SQLALCHEMY_DATABASE_URI'] = cls.get_required_env('POSTGRES_URI')

        cls.validate_required_config()


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type[Config]:
    """Get configuration class based on environment"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    return config.get(config_name, DevelopmentConfig)
