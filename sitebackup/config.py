import os

from sitebackup.models import BackupClass, RetentionPolicy


def _env_int(name, default=None):
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    return int(value)


class Config:
    """Base configuration"""

    DEBUG = False

    # Storage
    STORAGE_BASE_NAME = os.environ.get('STORAGE_BASE_NAME') or 'site'
    STORAGE_BACKEND = os.environ.get('STORAGE_BACKEND') or 's3'  # 's3' or 'local'
    STORAGE_LAYOUT = os.environ.get('STORAGE_LAYOUT') or 'bucket'  # 'bucket' or 'prefix'
    STORAGE_BUCKET = os.environ.get('STORAGE_BUCKET')  # Only used by the 'prefix' layout
    LOCAL_STORAGE_DIR = os.environ.get('LOCAL_STORAGE_DIR') or '/data/backups'

    # S3 credentials (boto3 falls back to its own chain when these are unset)
    AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')
    AWS_REGION = os.environ.get('AWS_REGION') or 'us-east-1'
    S3_ENDPOINT_URL = os.environ.get('S3_ENDPOINT_URL')

    # Staging
    STAGING_ROOT = os.environ.get('STAGING_ROOT') or '/data/staging'

    # Database producer
    DB_ENGINE = os.environ.get('DB_ENGINE') or 'mysql'  # 'mysql' or 'postgres'
    DB_HOST = os.environ.get('DB_HOST') or 'localhost'
    DB_PORT = _env_int('DB_PORT')
    DB_USER = os.environ.get('DB_USER')
    DB_PASSWORD = os.environ.get('DB_PASSWORD')
    DB_NAME = os.environ.get('DB_NAME')

    # Site producer
    SITE_ROOT = os.environ.get('SITE_ROOT')

    # Archive
    COMPRESSION_FORMAT = os.environ.get('COMPRESSION_FORMAT') or 'tar.gz'
    PRODUCER_TIMEOUT = _env_int('PRODUCER_TIMEOUT')  # Seconds, None = no limit

    # Retention
    RETENTION_KEEP = _env_int('RETENTION_KEEP', RetentionPolicy.DEFAULT_KEEP_COUNT)
    RETENTION_KEEP_DB = _env_int('RETENTION_KEEP_DB')
    RETENTION_KEEP_SITE = _env_int('RETENTION_KEEP_SITE')

    # Scheduler
    SCHEDULE_BACKUP_CRON = os.environ.get('SCHEDULE_BACKUP_CRON') or '0 2 * * *'
    SCHEDULE_CLEANUP_CRON = os.environ.get('SCHEDULE_CLEANUP_CRON') or '30 3 * * *'
    SCHEDULER_TIMEZONE = 'UTC'

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR')

    def namespace(self, backup_class: BackupClass) -> str:
        """Storage namespace for a backup class: <baseName>_<classKey>."""
        return f"{self.STORAGE_BASE_NAME}_{backup_class.value}"

    def retention_policy(self, backup_class: BackupClass) -> RetentionPolicy:
        """Retention policy for a class, honoring per-class overrides."""
        if backup_class is BackupClass.DATABASE:
            override = self.RETENTION_KEEP_DB
        else:
            override = self.RETENTION_KEEP_SITE

        keep = override if override is not None else self.RETENTION_KEEP
        return RetentionPolicy(keep_count=keep)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    STORAGE_BACKEND = os.environ.get('STORAGE_BACKEND') or 'local'
    LOCAL_STORAGE_DIR = os.path.join(DATA_DIR, 'backups')
    STAGING_ROOT = os.path.join(DATA_DIR, 'staging')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    STORAGE_BASE_NAME = 'myblog'
    STORAGE_BACKEND = 'local'
    LOG_DIR = None


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


def load_config(config_name=None, **overrides) -> Config:
    """
    Build a configuration instance.

    Args:
        config_name: Key into ``config`` (default: $SITEBACKUP_ENV or 'production')
        **overrides: Upper-case option names to override on the instance

    Returns:
        Config instance

    Raises:
        ValueError: If config_name or an override name is unknown
    """
    if config_name is None:
        config_name = os.environ.get('SITEBACKUP_ENV', 'production')

    if config_name not in config:
        raise ValueError(
            f"Unknown configuration: {config_name}. "
            f"Valid options: {sorted(config.keys())}"
        )

    instance = config[config_name]()
    for key, value in overrides.items():
        if not key.isupper() or not hasattr(instance, key):
            raise ValueError(f"Unknown configuration option: {key}")
        setattr(instance, key, value)

    return instance
