import os
from dotenv import load_dotenv

load_dotenv()


def _csv(value):
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """Base configuration class."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Business-hour window used for timezone-aware step scheduling (local hours)
    WORKING_HOURS_START = int(os.environ.get('WORKING_HOURS_START', '9'))
    WORKING_HOURS_END = int(os.environ.get('WORKING_HOURS_END', '17'))
    SKIP_WEEKENDS_DEFAULT = os.environ.get('SKIP_WEEKENDS_DEFAULT', 'true').lower() == 'true'
    DEFAULT_TIMEZONE = os.environ.get('DEFAULT_TIMEZONE', 'UTC')

    # Sweep configuration
    SWEEP_INTERVAL_SECONDS = int(os.environ.get('SWEEP_INTERVAL_SECONDS', '60'))
    SWEEP_BATCH_SIZE = int(os.environ.get('SWEEP_BATCH_SIZE', '50'))
    CLAIM_TIMEOUT_MINUTES = int(os.environ.get('CLAIM_TIMEOUT_MINUTES', '30'))
    START_SCHEDULER = os.environ.get('START_SCHEDULER', 'false').lower() == 'true'
    SCHEDULER_SECRET = os.environ.get('SCHEDULER_SECRET', '')

    # Outbound calls
    WEBHOOK_TIMEOUT_SECONDS = int(os.environ.get('WEBHOOK_TIMEOUT_SECONDS', '10'))

    # Resend email transport
    RESEND_API_KEY = os.environ.get('RESEND_API_KEY')
    EMAIL_FROM = os.environ.get('EMAIL_FROM', 'outreach@example.com')
    NOTIFICATIONS_ENABLED = os.environ.get('NOTIFICATIONS_ENABLED', 'true').lower() == 'true'

    # Unsubscribe links
    PUBLIC_BASE_URL = os.environ.get('PUBLIC_BASE_URL', 'http://localhost:5001')
    UNSUBSCRIBE_TOKEN_TTL_DAYS = int(os.environ.get('UNSUBSCRIBE_TOKEN_TTL_DAYS', '90'))

    # Lead fields the update_field action may write
    UPDATE_FIELD_ALLOWED_FIELDS = _csv(os.environ.get(
        'UPDATE_FIELD_ALLOWED_FIELDS',
        'status,stage,lead_score,owner_id,timezone,intent_level,last_engaged_page'
    ))

    # CORS configuration
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

    # Logging configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///outreach_engine.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False

    # Production database (PostgreSQL)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SECRET_KEY = os.environ.get('SECRET_KEY')

    # Production CORS (more restrictive)
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '').split(',')

    @classmethod
    def validate_config(cls):
        """Validate production configuration."""
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise ValueError("DATABASE_URL environment variable is required for production")

        if not cls.SECRET_KEY:
            raise ValueError("SECRET_KEY environment variable is required for production")

        if not cls.RESEND_API_KEY:
            raise ValueError("RESEND_API_KEY environment variable is required for production")

        if not cls.SCHEDULER_SECRET:
            raise ValueError("SCHEDULER_SECRET environment variable is required for production")

        if not cls.CORS_ORIGINS or cls.CORS_ORIGINS == ['']:
            raise ValueError("CORS_ORIGINS environment variable is required for production")


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    RESEND_API_KEY = 'test-resend-key'
    SCHEDULER_SECRET = ''
    START_SCHEDULER = False


# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
