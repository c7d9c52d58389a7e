# Copyright 2025 John Brosnihan
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Redis-backed key-value store."""

import logging

import redis

from app.services.store import StoreUnavailableError

logger = logging.getLogger(__name__)


class RedisStore:
    """
    Store plan documents as plain Redis string values.

    Each key is namespaced with a prefix so the service can share a Redis
    database. Socket timeouts bound every call.
    """

    def __init__(self, client: redis.Redis, key_prefix: str = "") -> None:
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "", timeout: float = 5.0) -> "RedisStore":
        """
        Create a store from a Redis connection URL.

        Args:
            url: Redis URL (redis://, rediss:// or unix://)
            key_prefix: Prefix prepended to every key
            timeout: Socket connect and read timeout in seconds

        Returns:
            RedisStore bound to a new client
        """
        client = redis.Redis.from_url(
            url,
            decode_responses=False,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client, key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> bytes | None:
        try:
            return self._client.get(self._key(key))
        except redis.RedisError as e:
            logger.error(f"Redis GET failed for key {key}: {str(e)}")
            raise StoreUnavailableError(f"Redis GET failed for key {key}") from e

    def set(self, key: str, value: bytes) -> None:
        try:
            self._client.set(self._key(key), value)
        except redis.RedisError as e:
            logger.error(f"Redis SET failed for key {key}: {str(e)}")
            raise StoreUnavailableError(f"Redis SET failed for key {key}") from e

    def delete(self, key: str) -> int:
        try:
            return int(self._client.delete(self._key(key)))
        except redis.RedisError as e:
            logger.error(f"Redis DEL failed for key {key}: {str(e)}")
            raise StoreUnavailableError(f"Redis DEL failed for key {key}") from e

    def ping(self) -> None:
        try:
            self._client.ping()
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Redis ping failed: {str(e)}") from e

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError as e:
            logger.warning(f"Failed to close Redis client cleanly: {str(e)}")
