"""
Runtime settings read from the environment (.env supported).
Provider credentials live next to their clients; this module holds the
tunables shared by the services.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


# Pipeline
QUIZ_ATTEMPTS_PER_DIFFICULTY = _int_env("QUIZ_ATTEMPTS_PER_DIFFICULTY", 2)
DEFAULT_FLASHCARD_COUNT = _int_env("DEFAULT_FLASHCARD_COUNT", 10)
TRANSCRIPT_PROMPT_TOKENS = _int_env("TRANSCRIPT_PROMPT_TOKENS", 6000)
CHUNK_SIZE = _int_env("CHUNK_SIZE", 500)
CHUNK_OVERLAP = _int_env("CHUNK_OVERLAP", 100)

# Generation
MAX_ATTEMPTS_PER_GENERATOR = _int_env("MAX_ATTEMPTS_PER_GENERATOR", 3)
MAX_VALIDATION_RETRIES = _int_env("MAX_VALIDATION_RETRIES", 2)
DAILY_REQUEST_LIMIT = _int_env("DAILY_REQUEST_LIMIT", 1000)

# Quizzes
QUIZ_VERSION_RETENTION = _int_env("QUIZ_VERSION_RETENTION", 3)
PASSING_SCORE = _int_env("PASSING_SCORE", 70)

# Deletion
SOFT_DELETE_RECOVERY_DAYS = _int_env("SOFT_DELETE_RECOVERY_DAYS", 30)
VECTOR_DELETE_RETRIES = _int_env("VECTOR_DELETE_RETRIES", 3)
BLOB_DELETE_RETRIES = _int_env("BLOB_DELETE_RETRIES", 2)
CLEANUP_BATCH_SIZE = _int_env("CLEANUP_BATCH_SIZE", 50)
SAGA_STALL_MINUTES = _int_env("SAGA_STALL_MINUTES", 15)
SAGA_MAX_RECONCILE_ATTEMPTS = _int_env("SAGA_MAX_RECONCILE_ATTEMPTS", 5)

# Scheduled jobs (seconds)
AUTO_RESUME_INTERVAL = _int_env("AUTO_RESUME_INTERVAL", 3600)
QUOTA_CHECK_INTERVAL = _int_env("QUOTA_CHECK_INTERVAL", 900)
CLEANUP_INTERVAL = _int_env("CLEANUP_INTERVAL", 86400)
RECONCILE_INTERVAL = _int_env("RECONCILE_INTERVAL", 900)
ENABLE_SCHEDULED_JOBS = os.getenv("ENABLE_SCHEDULED_JOBS", "true").lower() == "true"

# Notifications
NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL")
