import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import boto3

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


@dataclass
class _CachedSecret:
    value: Any
    fetched_at: float


class SecretsManager:
    """
    Read-through cache over AWS Secrets Manager.

    Values are refetched once they are older than ``ttl_seconds`` so rotated
    credentials are picked up. If a refetch fails the previous value is
    served, which keeps the service up while a rotation is half done.
    """

    def __init__(
        self,
        region_name: Optional[str] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.region_name = region_name or os.environ.get("AWS_REGION", "us-east-1")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._client = None
        self._entries: Dict[str, _CachedSecret] = {}

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.session.Session().client("secretsmanager", region_name=self.region_name)
        return self._client

    def _fetch(self, secret_id: str) -> Any:
        response = self.client.get_secret_value(SecretId=secret_id)
        return response.get("SecretString", response.get("SecretBinary"))

    def get_secret(self, secret_id: str) -> Any:
        """
        Return the current value of a secret, from cache while it is fresh.

        Raises:
            Exception: Whatever boto3 raised, when nothing was cached yet
        """
        now = self._clock()
        entry = self._entries.get(secret_id)
        if entry is not None and now - entry.fetched_at < self.ttl_seconds:
            return entry.value

        try:
            value = self._fetch(secret_id)
        except Exception as e:
            if entry is None:
                logger.error(f"Could not read secret {secret_id}: {e}")
                raise
            logger.warning(f"Refreshing secret {secret_id} failed, serving the cached value: {e}")
            return entry.value

        logger.info(f"Loaded secret {secret_id}")
        self._entries[secret_id] = _CachedSecret(value=value, fetched_at=now)
        return value

    def get_json_secret(self, secret_id: str) -> Dict[str, Any]:
        return json.loads(self.get_secret(secret_id))

    def invalidate(self, secret_id: Optional[str] = None) -> None:
        """Forget one cached secret, or all of them."""
        if secret_id is None:
            self._entries.clear()
        else:
            self._entries.pop(secret_id, None)

    def get_db_credentials(self) -> Dict[str, str]:
        # RDS-managed secrets hold username, password, host, port and dbname
        return self.get_json_secret(os.environ.get("DATABASE_SECRETS_NAME", "timechat/db"))

    def get_jwt_secret(self) -> str:
        return self.get_secret(os.environ.get("JWT_SECRET_NAME", "timechat/jwt-secret"))


_managers: Dict[str, SecretsManager] = {}


def secrets_for(region_name: Optional[str] = None) -> SecretsManager:
    """One shared manager per region, so every settings field reuses the same cache."""
    region = region_name or os.environ.get("AWS_REGION", "us-east-1")
    if region not in _managers:
        _managers[region] = SecretsManager(region_name=region)
    return _managers[region]
