import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Scoreboard service configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///scoreboard.db')

    # Server settings
    HOST = os.getenv('HOST', '0.0.0.0')
    PORT = int(os.getenv('PORT', 3000))
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')

    # Shared secrets
    SUBMIT_SECRET = os.getenv('SUBMIT_SECRET', '')
    ADMIN_SECRET = os.getenv('ADMIN_SECRET', '')
    ALLOW_DEVELOPER_RESET = os.getenv('ALLOW_DEVELOPER_RESET', 'False').lower() == 'true'

    # Score admission
    SCORE_MAX = int(os.getenv('SCORE_MAX', 100000))

    # Ranking views
    LEADERBOARD_SIZE = int(os.getenv('LEADERBOARD_SIZE', 100))
    AROUND_TOP_K = int(os.getenv('AROUND_TOP_K', 10))
    AROUND_WINDOW_RADIUS = int(os.getenv('AROUND_WINDOW_RADIUS', 5))

    # Epoch / archive / reward policies
    EPOCH_BASELINE = 1
    ARCHIVE_LABEL_POLICY = os.getenv('ARCHIVE_LABEL_POLICY', 'epoch')  # "epoch" or "month"
    CLAIM_POLICY = os.getenv('CLAIM_POLICY', 'archive')                 # "archive" or "open"
    TIMEZONE = os.getenv('TIMEZONE', 'UTC')

    ARCHIVE_LABEL_POLICIES = ('epoch', 'month')
    CLAIM_POLICIES = ('archive', 'open')

    @classmethod
    def get_database_url(cls) -> str:
        """Get the database URL with the async driver selected"""
        database_url = cls.DATABASE_URL
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        elif database_url.startswith('postgresql://'):
            database_url = database_url.replace('postgresql://', 'postgresql+asyncpg://')
        return database_url

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.SUBMIT_SECRET:
            raise ValueError("SUBMIT_SECRET is required")
        if not cls.ADMIN_SECRET:
            raise ValueError("ADMIN_SECRET is required")
        if cls.ARCHIVE_LABEL_POLICY not in cls.ARCHIVE_LABEL_POLICIES:
            raise ValueError(f"ARCHIVE_LABEL_POLICY must be one of {', '.join(cls.ARCHIVE_LABEL_POLICIES)}")
        if cls.CLAIM_POLICY not in cls.CLAIM_POLICIES:
            raise ValueError(f"CLAIM_POLICY must be one of {', '.join(cls.CLAIM_POLICIES)}")
        if cls.SCORE_MAX < 0:
            raise ValueError("SCORE_MAX must be non-negative")
        if cls.LEADERBOARD_SIZE < 1:
            raise ValueError("LEADERBOARD_SIZE must be positive")
