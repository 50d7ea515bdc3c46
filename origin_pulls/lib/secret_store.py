"""Secret store clients for reading previously issued origin certificate material."""

from typing import Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from mypy_boto3_secretsmanager import SecretsManagerClient as SecretsManagerClientType
from mypy_boto3_ssm import SSMClient as SSMClientType

from origin_pulls.lib.errors import SecretNotFoundError


class SecretStoreClient(Protocol):
    """Read named secrets as bytes."""

    def get_secret(self, name: str) -> bytes:
        """Return the secret value, raising SecretNotFoundError if absent."""
        ...


def _client_config(timeout: float) -> Config:
    return Config(connect_timeout=timeout, read_timeout=timeout)


class SecretsManagerStore:
    """AWS Secrets Manager backed secret store."""

    def __init__(self, region: str = "eu-west-2", timeout: float = 30.0) -> None:
        """Initialize Secrets Manager client.

        Args:
            region: AWS region for Secrets Manager client
            timeout: Connect and read timeout in seconds
        """
        self.client: SecretsManagerClientType = boto3.client(
            "secretsmanager", region_name=region, config=_client_config(timeout)
        )

    def get_secret(self, name: str) -> bytes:
        """Fetch a secret by name or ARN.

        Args:
            name: Secret name or ARN

        Returns:
            SecretString encoded as UTF-8, or SecretBinary as-is

        Raises:
            SecretNotFoundError: If the secret does not exist
            ClientError: For any other AWS error
        """
        try:
            response = self.client.get_secret_value(SecretId=name)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "ResourceNotFoundException":
                raise SecretNotFoundError(name) from e
            raise

        if "SecretString" in response:
            return response["SecretString"].encode("utf-8")
        return response.get("SecretBinary", b"")


class ParameterStore:
    """SSM Parameter Store backed secret store (SecureString parameters)."""

    def __init__(self, region: str = "eu-west-2", timeout: float = 30.0) -> None:
        """Initialize SSM client.

        Args:
            region: AWS region for SSM client
            timeout: Connect and read timeout in seconds
        """
        self.client: SSMClientType = boto3.client(
            "ssm", region_name=region, config=_client_config(timeout)
        )

    def get_secret(self, name: str) -> bytes:
        """Fetch a parameter value with decryption.

        Args:
            name: Parameter name (e.g., '/origin/example.com/private-key')

        Returns:
            Parameter value as UTF-8 bytes

        Raises:
            SecretNotFoundError: If the parameter does not exist
            ClientError: For any other AWS error
        """
        try:
            response = self.client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "ParameterNotFound":
                raise SecretNotFoundError(name) from e
            raise

        return response["Parameter"]["Value"].encode("utf-8")
