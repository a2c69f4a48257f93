"""Configuration module for the entry engine."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    ENV = os.getenv('STOCKLINE_ENV', 'development')
    DEBUG = os.getenv('STOCKLINE_DEBUG', '0') == '1'
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'stock')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'stock')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'stock')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', '0') == '1'

    # Company scope for stock lookups and cache keys
    COMPANY_ID = int(os.getenv('COMPANY_ID', '1'))

    # Tax (percentage, e.g. 5 = 5%)
    VAT_RATE = os.getenv('VAT_RATE', '5')
    DEFAULT_TAX_TYPE = os.getenv('DEFAULT_TAX_TYPE', 'Vat')
    DEFAULT_TAX_MODE = os.getenv('DEFAULT_TAX_MODE', 'inclusive')
    DEFAULT_RATE_TIER = os.getenv('DEFAULT_RATE_TIER', 'WSale')

    # Redis Cache Configuration
    # Short-lived stock lookups within one editing session
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_STOCK_TTL = int(os.getenv('CACHE_STOCK_TTL', '30'))  # seconds
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'stockline')


class TestConfig(Config):
    """In-memory database, cache off."""

    TESTING = True
    DATABASE_URL = 'sqlite:///:memory:'
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = False
    CACHE_ENABLED = False
