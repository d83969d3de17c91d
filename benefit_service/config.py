import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name, default):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def _database_uri():
    if os.environ.get('DATABASE_URL'):
        return os.environ['DATABASE_URL']
    db_user = os.environ.get('DB_USER', 'benefit_svc_user')
    db_pass = os.environ.get('DB_PASS', 'password')
    db_host = os.environ.get('DB_HOST', 'benefits-db')
    db_name = os.environ.get('DB_NAME', 'benefits_db')
    return f"postgresql://{db_user}:{db_pass}@{db_host}/{db_name}"


class Config:
    SQLALCHEMY_DATABASE_URI = _database_uri()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CREATE_SCHEMA = _env_flag('CREATE_SCHEMA', 'true')

    # pessimistic | optimistic
    CONCURRENCY_STRATEGY = os.environ.get('CONCURRENCY_STRATEGY', 'pessimistic')
    LOCK_TIMEOUT_SECONDS = float(os.environ.get('LOCK_TIMEOUT_SECONDS', '5'))
    OPTIMISTIC_MAX_ATTEMPTS = int(os.environ.get('OPTIMISTIC_MAX_ATTEMPTS', '5'))
    OPTIMISTIC_BACKOFF_SECONDS = float(os.environ.get('OPTIMISTIC_BACKOFF_SECONDS', '0.01'))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'json')
