"""Secret reference resolution (env://, vault://, aws://).

Tool auth credentials and configuration values may be stored as references
instead of literal values. References are resolved at use time so rotated
secrets are picked up without re-registering a tool.

The Vault and AWS clients are created on first use, and only when their
settings are present. ``hvac`` and ``boto3`` ship in the ``secrets`` extra.
"""

import json
import logging
import os
from typing import Any, Optional

logger = logging.getLogger(__name__)

SECRET_REF_PREFIXES = ("vault://", "aws://", "env://")


def is_secret_ref(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(SECRET_REF_PREFIXES)


class SecretsManager:
    """Resolves secret references against Vault, AWS Secrets Manager or the environment."""

    def __init__(self):
        self._vault_client = None
        self._aws_client = None

    def _vault(self):
        if self._vault_client is None:
            vault_url = os.getenv("VAULT_ADDR")
            vault_token = os.getenv("VAULT_TOKEN")
            if not (vault_url and vault_token):
                return None
            import hvac

            self._vault_client = hvac.Client(url=vault_url, token=vault_token)
        return self._vault_client

    def _aws(self):
        if self._aws_client is None:
            aws_region = os.getenv("AWS_REGION")
            if not aws_region:
                return None
            import boto3

            self._aws_client = boto3.client("secretsmanager", region_name=aws_region)
        return self._aws_client

    def get_secret(self, secret_ref: str) -> Optional[str]:
        """
        Resolve a secret reference.

        Supports:
        - vault://secret/path/key - HashiCorp Vault (KV v2)
        - aws://secret-name/key - AWS Secrets Manager (JSON secret)
        - env://VAR_NAME - Environment variable
        - Direct value (if not a reference)

        Returns:
            Secret value or None if not found
        """
        if not secret_ref:
            return None

        if not is_secret_ref(secret_ref):
            return secret_ref

        if secret_ref.startswith("env://"):
            return os.getenv(secret_ref[len("env://"):])

        if secret_ref.startswith("vault://"):
            return self._get_vault_secret(secret_ref[len("vault://"):])

        return self._get_aws_secret(secret_ref[len("aws://"):])

    def _get_vault_secret(self, path: str) -> Optional[str]:
        client = self._vault()
        if client is None:
            logger.warning("Vault reference used but VAULT_ADDR/VAULT_TOKEN are not set")
            return None

        secret_path, _, key = path.rpartition("/")
        if not secret_path or not key:
            return None

        try:
            response = client.secrets.kv.v2.read_secret_version(path=secret_path)
        except Exception as e:
            logger.warning(f"Failed to read Vault secret at {secret_path}: {e}")
            return None
        return response.get("data", {}).get("data", {}).get(key)

    def _get_aws_secret(self, path: str) -> Optional[str]:
        client = self._aws()
        if client is None:
            logger.warning("AWS secret reference used but AWS_REGION is not set")
            return None

        secret_name, _, key = path.partition("/")
        if not secret_name or not key:
            return None

        try:
            response = client.get_secret_value(SecretId=secret_name)
            secret_data = json.loads(response.get("SecretString", "{}"))
        except Exception as e:
            logger.warning(f"Failed to read AWS secret {secret_name}: {e}")
            return None
        return secret_data.get(key)


# Global secrets manager instance
secrets_manager = SecretsManager()


def get_secret(secret_ref: str, fallback: Optional[str] = None) -> Optional[str]:
    """Resolve ``secret_ref`` (or return it unchanged if it is a literal), else ``fallback``."""
    value = secrets_manager.get_secret(secret_ref)
    return value if value is not None else fallback
