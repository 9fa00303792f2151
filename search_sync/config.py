"""
Configuration for the search index sync worker.

All knobs are read from the environment once at import time.
``ConfigValidator`` checks them on startup.
"""

import os
import sys
from typing import List, Tuple

# ── Database ────────────────────────────────────────────────

DB_HOST = os.getenv("DB_HOST", "db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "app")
DB_USER = os.getenv("DB_USER", "app")
DB_PASS = os.getenv("DB_PASS", "")
DB_POOL_MIN_CONN = int(os.getenv("DB_POOL_MIN_CONN", "1"))
DB_POOL_MAX_CONN = int(os.getenv("DB_POOL_MAX_CONN", "8"))

# ── Meilisearch ─────────────────────────────────────────────

MEILI_URL = os.getenv("MEILI_URL", "http://meilisearch:7700")
MEILI_MASTER_KEY = os.getenv("MEILI_MASTER_KEY", "")
MEILI_TIMEOUT = int(os.getenv("MEILI_TIMEOUT", "30"))  # seconds per request

# ── Batching ────────────────────────────────────────────────

READ_BATCH_SIZE = int(os.getenv("SEARCH_READ_BATCH_SIZE", "1000"))
MEILISEARCH_DOCUMENT_BATCH_SIZE = int(os.getenv("SEARCH_DOCUMENT_BATCH_SIZE", "25"))
DELETE_BATCH_SIZE = int(os.getenv("SEARCH_DELETE_BATCH_SIZE", "1000"))

# ── Task waiting ────────────────────────────────────────────

TASK_MAX_RETRIES = int(os.getenv("SEARCH_TASK_MAX_RETRIES", "60"))
TASK_BACKOFF = os.getenv("SEARCH_TASK_BACKOFF", "exponential")  # or "fixed"
TASK_BACKOFF_BASE = float(os.getenv("SEARCH_TASK_BACKOFF_BASE", "0.5"))  # seconds
TASK_BACKOFF_MAX = float(os.getenv("SEARCH_TASK_BACKOFF_MAX", "10"))  # seconds

# ── Worker ──────────────────────────────────────────────────

INDEX_INTERVAL = int(os.getenv("SEARCH_INDEX_INTERVAL", "300"))  # seconds
SHADOW_SUFFIX = "_NEW"

# ── Logging ─────────────────────────────────────────────────

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "false").lower() in ("1", "true", "yes")
LOG_FILE = os.getenv("LOG_FILE") or None


class ConfigValidator:
    """Validates environment configuration on startup"""

    REQUIRED_VARS = {
        "DB_HOST": "PostgreSQL database host",
        "DB_NAME": "PostgreSQL database name",
        "DB_USER": "PostgreSQL database user",
        "MEILI_URL": "Meilisearch base URL",
    }

    OPTIONAL_VARS = {
        "DB_PORT": ("5432", "PostgreSQL database port"),
        "DB_PASS": ("", "PostgreSQL database password"),
        "MEILI_MASTER_KEY": ("", "Meilisearch API key"),
        "SEARCH_READ_BATCH_SIZE": ("1000", "Rows fetched per page"),
        "SEARCH_DOCUMENT_BATCH_SIZE": ("25", "Documents per index submission"),
        "SEARCH_TASK_MAX_RETRIES": ("60", "Task polling rounds before timing out"),
        "SEARCH_INDEX_INTERVAL": ("300", "Seconds between sync cycles"),
    }

    POSITIVE_INTS = (
        "DB_PORT",
        "SEARCH_READ_BATCH_SIZE",
        "SEARCH_DOCUMENT_BATCH_SIZE",
        "SEARCH_DELETE_BATCH_SIZE",
        "SEARCH_TASK_MAX_RETRIES",
        "SEARCH_INDEX_INTERVAL",
        "MEILI_TIMEOUT",
    )

    @classmethod
    def validate(cls) -> Tuple[bool, List[str], List[str]]:
        """
        Validate configuration
        Returns: (is_valid, errors, warnings)
        """
        errors = []
        warnings = []

        for var, description in cls.REQUIRED_VARS.items():
            value = os.getenv(var)
            if not value or value.strip() == "":
                errors.append(f"Missing required env var: {var} ({description})")

        for var, (default, description) in cls.OPTIONAL_VARS.items():
            value = os.getenv(var)
            if not value or value.strip() == "":
                warnings.append(f"Using default for {var}={default} ({description})")

        errors.extend(cls._validate_values())

        is_valid = len(errors) == 0
        return is_valid, errors, warnings

    @classmethod
    def _validate_values(cls) -> List[str]:
        errors = []

        for var in cls.POSITIVE_INTS:
            raw = os.getenv(var)
            if raw is None or raw.strip() == "":
                continue
            try:
                if int(raw) < 1:
                    errors.append(f"{var} must be positive: {raw}")
            except ValueError:
                errors.append(f"{var} must be a number: {raw}")

        db_port = os.getenv("DB_PORT", "5432")
        try:
            if not (1 <= int(db_port) <= 65535):
                errors.append(f"Invalid DB_PORT: {db_port}")
        except ValueError:
            pass  # reported above

        meili_url = os.getenv("MEILI_URL", "")
        if meili_url and not (meili_url.startswith("http://") or meili_url.startswith("https://")):
            errors.append("MEILI_URL must start with http:// or https://")

        backoff = os.getenv("SEARCH_TASK_BACKOFF", "exponential")
        if backoff not in ("exponential", "fixed"):
            errors.append(f"SEARCH_TASK_BACKOFF must be 'exponential' or 'fixed': {backoff}")

        read_batch = os.getenv("SEARCH_READ_BATCH_SIZE", "1000")
        doc_batch = os.getenv("SEARCH_DOCUMENT_BATCH_SIZE", "25")
        try:
            if int(doc_batch) > int(read_batch):
                errors.append("SEARCH_DOCUMENT_BATCH_SIZE should not exceed SEARCH_READ_BATCH_SIZE")
        except ValueError:
            pass

        return errors

    @classmethod
    def print_validation_results(cls, is_valid: bool, errors: List[str], warnings: List[str]):
        print("\n" + "=" * 70)
        print("Configuration Validation Results")
        print("=" * 70)

        if warnings:
            print("\nWARNINGS:")
            for warning in warnings:
                print(f"  - {warning}")

        if errors:
            print("\nERRORS:")
            for error in errors:
                print(f"  - {error}")
            print("\n" + "=" * 70)
            print("Configuration validation FAILED")
            print("=" * 70 + "\n")
        else:
            print("\nConfiguration validation PASSED")
            print("=" * 70 + "\n")

        return is_valid

    @classmethod
    def validate_and_exit_on_error(cls, quiet: bool = False):
        """Validate configuration and exit if errors found"""
        is_valid, errors, warnings = cls.validate()
        if not quiet or not is_valid:
            cls.print_validation_results(is_valid, errors, warnings)

        if not is_valid:
            print("Fix configuration errors before starting the worker.", file=sys.stderr)
            sys.exit(1)
