# config/validation.py

"""
Environment variable validation for b2bsync.
Validates required environment variables at startup.
"""

import json
import os
import sys
from typing import List, Tuple


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in {"your-secret-key", "your_secret_key"}:
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to the canonical store connection string.")

    # The SQLite transport is for local runs only
    if os.environ.get("SYNC_WORKER_ENABLED", "false").lower() == "true":
        if not os.environ.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required when SYNC_WORKER_ENABLED=true")
        if not os.environ.get("CELERY_RESULT_BACKEND"):
            errors.append("CELERY_RESULT_BACKEND is required when SYNC_WORKER_ENABLED=true")

    celery_config = os.environ.get("CELERY_CONFIG")
    if celery_config:
        try:
            parsed = json.loads(celery_config)
        except json.JSONDecodeError:
            errors.append("CELERY_CONFIG must be a JSON object")
        else:
            if not isinstance(parsed, dict):
                errors.append("CELERY_CONFIG must be a JSON object")

    for key in ("SYNC_PAGE_SIZE", "SYNC_ORDER_CHUNK_SIZE", "SYNC_SOURCE_MAX_ATTEMPTS", "SYNC_STORE_MAX_ATTEMPTS"):
        raw = os.environ.get(key)
        if raw is not None and (not raw.strip().isdigit() or int(raw) < 1):
            errors.append(f"{key} must be a positive integer (got {raw!r})")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.

    Args:
        flask_env: Flask environment (development, production, testing)
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
