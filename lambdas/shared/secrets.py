"""SSM Parameter Store helpers."""

import os
from functools import lru_cache

import boto3
from aws_lambda_powertools import Logger

from .exceptions import ConfigurationError

logger = Logger(child=True)

# SSM Parameter name for the analysis service shared secret
SHARED_SECRET_PARAM = "/scan-gateway/dev/secrets/shared_secret"


@lru_cache(maxsize=1)
def get_shared_secret() -> str:
    """Retrieve the analysis service shared secret.

    The SHARED_SECRET environment variable wins when set. Otherwise the
    secret is read from SSM Parameter Store (WithDecryption=True for
    SecureString parameters) and cached for the lifetime of the container.

    Returns:
        The shared secret string

    Raises:
        ConfigurationError: If the parameter resolves to an empty value
        ClientError: If SSM parameter not found
    """
    secret = os.environ.get("SHARED_SECRET")
    if secret:
        return secret

    param_name = os.environ.get("SHARED_SECRET_PARAM", SHARED_SECRET_PARAM)

    client = boto3.client("ssm")
    response = client.get_parameter(Name=param_name, WithDecryption=True)
    value = response["Parameter"]["Value"]
    if not value:
        raise ConfigurationError(
            "Shared secret parameter is empty", config_key="SHARED_SECRET_PARAM"
        )
    logger.info("Retrieved shared secret from SSM Parameter Store")
    return value
