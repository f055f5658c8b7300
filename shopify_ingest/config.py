"""
Configuration module for the Shopify ingestion engine.

Reads environment variables and provides configuration values for
database connections, Shopify request pacing, and incremental settings.
"""

import json
import os
from pathlib import Path
from typing import Optional, Dict, Any

from dotenv import load_dotenv

"""
Injects environment variables from a .env file when running outside AWS or in local development.

This ensures developers can set configuration locally in a .env instead of setting shell env vars.
"""


def _load_dotenv_if_present(dotenv_path: Path) -> None:
    """
    Loads environment variables from a .env file if it exists and not running in AWS.

    Args:
        dotenv_path (Path): Path to the .env file.
    """
    for aws_indicator in (
        "AWS_EXECUTION_ENV",
        "AWS_LAMBDA_FUNCTION_NAME",
        "ECS_CONTAINER_METADATA_URI",
    ):
        if os.getenv(aws_indicator):
            return
    if dotenv_path.exists():
        # Do not overwrite existing environment variables
        load_dotenv(dotenv_path=dotenv_path, override=False)


env_path = Path(__file__).parent.parent / ".env"
_load_dotenv_if_present(env_path)


class Config:
    """
    Configuration class that reads environment variables for the ingestion engine.
    """

    # Channel handled by this engine
    CHANNEL: str = "shopify"

    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_SECRET_ARN: str = os.getenv("DB_SECRET_ARN", "")
    DB_CONNECT_TIMEOUT: int = int(os.getenv("DB_CONNECT_TIMEOUT", "10"))

    # Shopify request configuration
    PAGE_SIZE: int = int(os.getenv("SHOPIFY_PAGE_SIZE", "250"))
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

    # Retry / throttle policy
    DETAIL_MAX_RETRIES: int = int(os.getenv("DETAIL_MAX_RETRIES", "3"))
    LIST_MAX_RETRIES: int = int(os.getenv("LIST_MAX_RETRIES", "0"))
    RETRY_BASE_DELAY_SECONDS: float = float(
        os.getenv("RETRY_BASE_DELAY_SECONDS", "0.2")
    )
    CALL_BUDGET_THRESHOLD: float = float(os.getenv("CALL_BUDGET_THRESHOLD", "0.8"))
    CALL_BUDGET_PAUSE_SECONDS: float = float(
        os.getenv("CALL_BUDGET_PAUSE_SECONDS", "0.6")
    )
    DETAIL_PAUSE_SECONDS: float = float(os.getenv("DETAIL_PAUSE_SECONDS", "0.15"))

    # Incremental State Configuration
    LOOKBACK_DAYS: int = int(os.getenv("SYNC_LOOKBACK_DAYS", "7"))

    # Reference data
    STATE_MAP_PATH: str = os.getenv("STATE_MAP_PATH", "")

    # Cross-tenant parallelism (accounts of one tenant are always sequential)
    MAX_WORKERS: int = int(os.getenv("INGEST_MAX_WORKERS", "4"))

    # Lazy-loaded secret cache
    _db_secret_cache: Dict[str, Any] = {}

    @classmethod
    def _load_db_secret(cls) -> Dict[str, Any]:
        """
        Retrieve and cache the database secret from AWS Secrets Manager.

        Returns:
            Dict containing the secret payload.
        """
        if not cls._db_secret_cache:
            if not cls.DB_SECRET_ARN:
                raise ValueError("DB_SECRET_ARN environment variable is required")

            import boto3

            secrets_client = boto3.client("secretsmanager")
            try:
                response = secrets_client.get_secret_value(SecretId=cls.DB_SECRET_ARN)
                cls._db_secret_cache = json.loads(response["SecretString"])
            except Exception as e:
                raise ValueError(
                    f"Failed to retrieve database secret from Secrets Manager: {e}"
                )
        return cls._db_secret_cache

    @classmethod
    def get_db_connection_details(cls) -> Dict[str, Any]:
        """
        Provide keyword arguments for psycopg2.connect.

        DATABASE_URL wins when set; otherwise the details are sourced
        from the Secrets Manager secret named by DB_SECRET_ARN.

        Returns:
            Dict of connection keyword arguments.
        """
        if cls.DATABASE_URL:
            return {"dsn": cls.DATABASE_URL, "connect_timeout": cls.DB_CONNECT_TIMEOUT}

        secret = cls._load_db_secret()

        required_keys = ["host", "port", "username", "password"]
        missing_keys = [key for key in required_keys if key not in secret]
        if missing_keys:
            raise ValueError(
                f"Database secret missing required keys: {', '.join(missing_keys)}"
            )

        database_name = secret.get("dbname") or secret.get("database")
        if not database_name:
            raise ValueError(
                "Database secret must include either 'dbname' or 'database'"
            )

        return {
            "host": secret["host"],
            "port": int(secret["port"]),
            "dbname": database_name,
            "user": secret["username"],
            "password": secret["password"],
            "connect_timeout": cls.DB_CONNECT_TIMEOUT,
        }

    @classmethod
    def validate(cls) -> None:
        """
        Validate that required configuration values are present and sane.

        Raises:
            ValueError: If any required configuration is missing or invalid.
        """
        problems = []

        if not cls.DATABASE_URL and not cls.DB_SECRET_ARN:
            problems.append("DATABASE_URL or DB_SECRET_ARN must be set")

        if not 1 <= cls.PAGE_SIZE <= 250:
            problems.append("SHOPIFY_PAGE_SIZE must be between 1 and 250")

        if cls.DETAIL_MAX_RETRIES < 0 or cls.LIST_MAX_RETRIES < 0:
            problems.append("DETAIL_MAX_RETRIES and LIST_MAX_RETRIES must be >= 0")

        if not 0 < cls.CALL_BUDGET_THRESHOLD <= 1:
            problems.append("CALL_BUDGET_THRESHOLD must be in (0, 1]")

        if cls.HTTP_TIMEOUT_SECONDS <= 0:
            problems.append("HTTP_TIMEOUT_SECONDS must be positive")

        if cls.LOOKBACK_DAYS < 1:
            problems.append("SYNC_LOOKBACK_DAYS must be at least 1")

        if cls.STATE_MAP_PATH and not Path(cls.STATE_MAP_PATH).exists():
            problems.append(f"STATE_MAP_PATH does not exist: {cls.STATE_MAP_PATH}")

        if problems:
            raise ValueError(f"Invalid configuration: {'; '.join(problems)}")

    @classmethod
    def get_state_map_path(cls) -> Optional[Path]:
        """Return the override state reference file, if one is configured."""
        return Path(cls.STATE_MAP_PATH) if cls.STATE_MAP_PATH else None
