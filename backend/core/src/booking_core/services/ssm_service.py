"""Secret lookup for Stripe credentials.

Environment variables win (local development, CI); otherwise the value is
read from SSM Parameter Store as a SecureString and cached in-process.
"""

import os
from functools import lru_cache

import boto3
from botocore.exceptions import ClientError

from booking_core.utils.logging import get_logger

logger = get_logger(__name__)

PARAMETER_ROOT = "/cabin-booking"


class SSMServiceError(Exception):
    """Raised when a secret cannot be resolved."""


def parameter_path(environment: str, *parts: str) -> str:
    """Build a parameter name, e.g. /cabin-booking/dev/stripe/secret_key."""
    return "/".join([PARAMETER_ROOT, environment, *parts])


class SSMService:
    """Cached reader for SSM Parameter Store parameters."""

    def __init__(self) -> None:
        self._client = boto3.client("ssm")
        self._cache: dict[str, str] = {}

    def get_parameter(self, name: str, *, use_cache: bool = True) -> str:
        """Retrieve a decrypted parameter value.

        Args:
            name: Full parameter path
            use_cache: Whether to use a cached value if available

        Returns:
            The decrypted parameter value.

        Raises:
            SSMServiceError: If the parameter cannot be retrieved.
        """
        if use_cache and name in self._cache:
            return self._cache[name]

        try:
            logger.info("Fetching SSM parameter: %s", name)
            response = self._client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "ParameterNotFound":
                raise SSMServiceError(f"SSM parameter not found: {name}") from e
            raise SSMServiceError(
                f"Failed to retrieve SSM parameter {name} ({error_code})"
            ) from e

        value: str = response["Parameter"]["Value"]
        self._cache[name] = value
        return value

    def resolve(self, env_var: str, name: str) -> str:
        """Resolve a secret from an environment variable or SSM.

        Args:
            env_var: Environment variable checked first
            name: SSM parameter path used when the variable is unset

        Returns:
            Secret value
        """
        value = os.environ.get(env_var)
        if value:
            logger.debug("Using %s from environment", env_var)
            return value
        return self.get_parameter(name)

    def clear_cache(self) -> None:
        self._cache.clear()


@lru_cache(maxsize=1)
def get_ssm_service() -> SSMService:
    """Get the shared SSMService instance."""
    return SSMService()
