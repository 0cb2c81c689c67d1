import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-change-me')
    ADMIN_API_KEY = os.getenv('ADMIN_API_KEY')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'postgresql://localhost/feed_curator')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {'pool_pre_ping': True, 'pool_size': 5}

    # Generative providers
    LLM_PROVIDER = os.getenv('LLM_PROVIDER', 'openai')
    OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
    LLM_MODEL = os.getenv('LLM_MODEL', 'gpt-4.1-mini')
    ANTHROPIC_API_KEY = os.getenv('ANTHROPIC_API_KEY')
    ANTHROPIC_MODEL = os.getenv('ANTHROPIC_MODEL', 'claude-sonnet-4-20250514')
    XAI_API_KEY = os.getenv('XAI_API_KEY')
    XAI_MODEL = os.getenv('XAI_MODEL', 'grok-3-mini-fast')
    LLM_DAILY_TOKEN_BUDGET = int(os.getenv('LLM_DAILY_TOKEN_BUDGET', '2000000'))
    LLM_REQUEST_TIMEOUT_SECONDS = float(os.getenv('LLM_REQUEST_TIMEOUT_SECONDS', '120'))
    LLM_RETRY_DELAYS = (2, 5, 10)

    # Embeddings
    EMBEDDING_MODEL = os.getenv('EMBEDDING_MODEL', 'text-embedding-3-small')
    EMBEDDING_PROVIDER = os.getenv('EMBEDDING_PROVIDER', 'openai')
    EMBEDDING_DIMENSIONS = int(os.getenv('EMBEDDING_DIMENSIONS', '512'))
    EMBEDDING_REQUEST_TIMEOUT_SECONDS = float(os.getenv('EMBEDDING_REQUEST_TIMEOUT_SECONDS', '60'))
    # None = detect at startup; 'json' or 'pgvector' pins the backend
    VECTOR_BACKEND = os.getenv('VECTOR_BACKEND')

    # Feeds
    FEED_FETCH_TIMEOUT_SECONDS = float(os.getenv('FEED_FETCH_TIMEOUT_SECONDS', '10'))
    FEED_FETCH_WORKERS = int(os.getenv('FEED_FETCH_WORKERS', '8'))
    FEED_MAX_ITEMS = int(os.getenv('FEED_MAX_ITEMS', '50'))

    # Scheduler
    SCHEDULER_ENABLED = os.getenv('SCHEDULER_ENABLED', 'true').lower() == 'true'
    SCHEDULER_API_ENABLED = False
    INGEST_CRON_HOURS = os.getenv('INGEST_CRON_HOURS', '7,17')
    AFFINITY_CRON_DAY = os.getenv('AFFINITY_CRON_DAY', 'sun')
    AFFINITY_CRON_HOUR = int(os.getenv('AFFINITY_CRON_HOUR', '9'))

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')


class TestConfig(Config):
    TESTING = True
    ADMIN_API_KEY = 'test-admin-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}  # SQLite doesn't support pool_size
    SCHEDULER_ENABLED = False
    LLM_DAILY_TOKEN_BUDGET = 100000
    OPENAI_API_KEY = 'test-key'
    ANTHROPIC_API_KEY = None
    XAI_API_KEY = None
    VECTOR_BACKEND = 'json'
    LLM_RETRY_DELAYS = (0, 0, 0)
