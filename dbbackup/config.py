import os
import shlex
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from dbbackup.errors import ConfigError


TRUE_VALUES = ('1', 'true', 'yes', 'on')
FALSE_VALUES = ('0', 'false', 'no', 'off')

COMPRESSION_MODES = ('none', 'gzip', 'bzip2')
STORAGE_BACKENDS = ('local', 's3', 'sftp')


def parse_bool(key: str, value: Optional[str], default: bool) -> bool:
    """
    Parse a boolean toggle.

    Empty or unset values fall back to the default; anything that is not a
    recognised spelling is rejected instead of being coerced.
    """
    if value is None or not str(value).strip():
        return default

    normalized = str(value).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False

    raise ConfigError(
        f"Invalid boolean for {key}: {value!r}. "
        f"Use one of {TRUE_VALUES + FALSE_VALUES}"
    )


def parse_int(key: str, value: Optional[str], default: int, minimum: Optional[int] = None) -> int:
    """Parse an integer setting, rejecting malformed values."""
    if value is None or not str(value).strip():
        return default

    try:
        result = int(str(value).strip())
    except ValueError:
        raise ConfigError(f"Invalid integer for {key}: {value!r}")

    if minimum is not None and result < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {result}")

    return result


def parse_choice(key: str, value: Optional[str], default: str, choices) -> str:
    """Parse an enumerated setting (case-insensitive)."""
    if value is None or not str(value).strip():
        return default

    normalized = str(value).strip().lower()
    if normalized not in choices:
        raise ConfigError(f"Invalid value for {key}: {value!r}. Valid options: {list(choices)}")

    return normalized


class Config:
    """
    Typed view of the environment.

    Attribute names mirror the environment variables they come from. Any
    missing required key or malformed value raises ConfigError from the
    constructor, before a backup run starts.
    """

    REQUIRED = ('DB_HOST', 'DB_USER', 'DB_PASSWORD')

    BACKEND_REQUIRED = {
        'local': ('FILES_PATH_TO_SAVE_BACKUP',),
        's3': ('S3_BUCKET',),
        'sftp': ('SFTP_HOST', 'SFTP_USER', 'SFTP_PATH'),
    }

    MAIL_REQUIRED = ('MAIL_FROM', 'MAIL_TO', 'MAIL_SMTP_HOST')

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        env = os.environ if environ is None else environ

        def get(key, default=''):
            value = env.get(key)
            if value is None:
                return default
            return str(value).strip()

        # Catalog / dump
        self.DB_HOST = get('DB_HOST')
        self.DB_PORT = parse_int('DB_PORT', env.get('DB_PORT'), 3306, minimum=1)
        self.DB_USER = get('DB_USER')
        self.DB_PASSWORD = env.get('DB_PASSWORD', '')
        self.DB_EXCLUDE_DATABASES = get('DB_EXCLUDE_DATABASES')
        self.DB_DUMP_BINARY = get('DB_DUMP_BINARY', 'mysqldump') or 'mysqldump'
        self.DB_DUMP_TIMEOUT = parse_int('DB_DUMP_TIMEOUT', env.get('DB_DUMP_TIMEOUT'), 0, minimum=0)

        try:
            self.DB_DUMP_OPTIONS = shlex.split(get('DB_DUMP_OPTIONS', '--single-transaction --quick'))
        except ValueError as e:
            raise ConfigError(f"Invalid DB_DUMP_OPTIONS: {e}")

        # Files / retention
        self.FILES_DAYS_HISTORY = parse_int('FILES_DAYS_HISTORY', env.get('FILES_DAYS_HISTORY'), 7)
        self.FILES_COMPRESS = parse_choice('FILES_COMPRESS', env.get('FILES_COMPRESS'), 'none', COMPRESSION_MODES)
        self.FILES_DATE_FORMAT = get('FILES_DATE_FORMAT', '%Y%m%d%H%M%S') or '%Y%m%d%H%M%S'
        self.FILES_PATH_TO_SAVE_BACKUP = get('FILES_PATH_TO_SAVE_BACKUP')

        # Storage backend
        self.STORAGE_BACKEND = parse_choice('STORAGE_BACKEND', env.get('STORAGE_BACKEND'), 'local', STORAGE_BACKENDS)
        self.S3_BUCKET = get('S3_BUCKET')
        self.S3_PREFIX = get('S3_PREFIX')
        self.S3_REGION = get('S3_REGION', 'us-east-1') or 'us-east-1'
        self.S3_ENDPOINT_URL = get('S3_ENDPOINT_URL') or None
        self.AWS_ACCESS_KEY_ID = get('AWS_ACCESS_KEY_ID') or None
        self.AWS_SECRET_ACCESS_KEY = get('AWS_SECRET_ACCESS_KEY') or None
        self.SFTP_HOST = get('SFTP_HOST')
        self.SFTP_PORT = parse_int('SFTP_PORT', env.get('SFTP_PORT'), 22, minimum=1)
        self.SFTP_USER = get('SFTP_USER')
        self.SFTP_PASSWORD = env.get('SFTP_PASSWORD') or None
        self.SFTP_PRIVATE_KEY = get('SFTP_PRIVATE_KEY') or None
        self.SFTP_PATH = get('SFTP_PATH')

        # Mail
        self.MAIL_SEND_ON_ERROR = parse_bool('MAIL_SEND_ON_ERROR', env.get('MAIL_SEND_ON_ERROR'), True)
        self.MAIL_SEND_ON_SUCCESS = parse_bool('MAIL_SEND_ON_SUCCESS', env.get('MAIL_SEND_ON_SUCCESS'), False)
        self.MAIL_SEND_BACKUP_FILE = parse_bool('MAIL_SEND_BACKUP_FILE', env.get('MAIL_SEND_BACKUP_FILE'), False)
        self.MAIL_FROM = get('MAIL_FROM')
        self.MAIL_FROM_NAME = get('MAIL_FROM_NAME')
        self.MAIL_TO = get('MAIL_TO')
        self.MAIL_TO_NAME = get('MAIL_TO_NAME')
        self.MAIL_SMTP_HOST = get('MAIL_SMTP_HOST')
        self.MAIL_SMTP_PORT = parse_int('MAIL_SMTP_PORT', env.get('MAIL_SMTP_PORT'), 587, minimum=1)
        self.MAIL_SMTP_USER = get('MAIL_SMTP_USER') or None
        self.MAIL_SMTP_PASSWORD = env.get('MAIL_SMTP_PASSWORD') or None
        self.MAIL_SMTP_STARTTLS = parse_bool('MAIL_SMTP_STARTTLS', env.get('MAIL_SMTP_STARTTLS'), True)

        # Runtime
        self.APP_LANG = (get('APP_LANG', 'en') or 'en').lower()
        self.BACKUP_WORKERS = parse_int('BACKUP_WORKERS', env.get('BACKUP_WORKERS'), 1, minimum=1)
        self.BACKUP_SCHEDULE = get('BACKUP_SCHEDULE')
        self.LOG_LEVEL = get('LOG_LEVEL', 'INFO') or 'INFO'
        self.LOG_FILE = get('LOG_FILE') or None

        self._check_required()

    @property
    def mail_enabled(self) -> bool:
        return self.MAIL_SEND_ON_ERROR or self.MAIL_SEND_ON_SUCCESS

    def _check_required(self):
        required = list(self.REQUIRED)
        required.extend(self.BACKEND_REQUIRED[self.STORAGE_BACKEND])
        if self.mail_enabled:
            required.extend(self.MAIL_REQUIRED)

        missing = [key for key in required if not getattr(self, key)]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

        if self.STORAGE_BACKEND == 'sftp' and not (self.SFTP_PASSWORD or self.SFTP_PRIVATE_KEY):
            raise ConfigError("Either SFTP_PASSWORD or SFTP_PRIVATE_KEY must be set for the sftp backend")

    def __repr__(self):
        return f'<Config host={self.DB_HOST} backend={self.STORAGE_BACKEND} retention={self.FILES_DAYS_HISTORY}d>'


def load_config(env_file: Optional[str] = None) -> Config:
    """
    Load configuration from the environment.

    Values from a .env file (the given path, or one found from the working
    directory) fill in variables that are not already set.
    """
    if env_file is not None and not os.path.exists(env_file):
        raise ConfigError(f"Environment file not found: {env_file}")

    path = env_file or find_dotenv(usecwd=True)
    if path:
        load_dotenv(path, override=False)
    return Config()
