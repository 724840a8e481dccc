"""Gateway credentials from SSM Parameter Store.

Secrets live under ``/rentals/{ENVIRONMENT}/`` as SecureString parameters,
e.g. ``/rentals/prod/stripe/secret_key``.
"""

import os

import boto3
from botocore.exceptions import ClientError

from rentals.utils.logging import get_logger

logger = get_logger(__name__)

PARAMETER_PREFIX = "/rentals"


class SSMServiceError(Exception):
    """A secret could not be read from Parameter Store."""


class SSMService:
    """Reads and caches decrypted secrets for one deployment environment."""

    def __init__(self, environment: str | None = None, client=None) -> None:
        self.environment = environment or os.getenv("ENVIRONMENT", "dev")
        self._client = client or boto3.client("ssm")
        self._cache: dict[str, str] = {}

    def parameter_path(self, name: str) -> str:
        return f"{PARAMETER_PREFIX}/{self.environment}/{name.lstrip('/')}"

    def get_secret(self, name: str) -> str:
        """Decrypted value of ``name`` relative to the environment prefix.

        Raises:
            SSMServiceError: The parameter is missing or unreadable.
        """
        return self.get_secrets(name)[name]

    def get_secrets(self, *names: str) -> dict[str, str]:
        """Fetch several secrets in one round trip; cached values are reused."""
        missing = [n for n in names if n not in self._cache]
        if missing:
            paths = {self.parameter_path(n): n for n in missing}
            try:
                response = self._client.get_parameters(Names=list(paths), WithDecryption=True)
            except ClientError as e:
                code = e.response.get("Error", {}).get("Code", "Unknown")
                logger.error("SSM read failed for %s: %s", ", ".join(paths), code)
                raise SSMServiceError(f"Cannot read gateway secrets ({code})") from e

            if response.get("InvalidParameters"):
                raise SSMServiceError(
                    "SSM parameter not found: " + ", ".join(response["InvalidParameters"])
                )
            for param in response["Parameters"]:
                self._cache[paths[param["Name"]]] = param["Value"]
            logger.info("Loaded %d secret(s) for environment %s", len(missing), self.environment)

        return {n: self._cache[n] for n in names}

    def clear_cache(self) -> None:
        """Forget cached secrets so rotated values are picked up."""
        self._cache.clear()
