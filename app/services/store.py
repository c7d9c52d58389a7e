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
"""Key-value store contract and backend selection."""

import logging
from typing import Protocol, runtime_checkable

from app.config import Settings

logger = logging.getLogger(__name__)


class StoreUnavailableError(Exception):
    """Raised when the underlying store cannot be reached or fails an operation."""

    pass


class StoreConfigurationError(Exception):
    """Raised when the configured store backend cannot be built."""

    pass


@runtime_checkable
class KeyValueStore(Protocol):
    """
    Minimal key-value interface the plan service depends on.

    Implementations must raise StoreUnavailableError for any I/O failure,
    including timeouts.
    """

    def get(self, key: str) -> bytes | None:
        """Return the stored bytes for key, or None when absent."""
        ...

    def set(self, key: str, value: bytes) -> None:
        """Store value under key, replacing any existing value."""
        ...

    def delete(self, key: str) -> int:
        """Delete key and return the number of records removed (0 or 1)."""
        ...

    def ping(self) -> None:
        """Check connectivity, raising StoreUnavailableError on failure."""
        ...

    def close(self) -> None:
        """Release any held connections."""
        ...


def create_store(settings: Settings) -> KeyValueStore:
    """
    Build the key-value store selected by STORE_BACKEND.

    Backend modules are imported lazily so that a deployment only needs the
    client library of the backend it actually uses.

    Args:
        settings: Application settings

    Returns:
        KeyValueStore: Configured backend instance

    Raises:
        StoreConfigurationError: If the backend cannot be initialized
    """
    backend = settings.STORE_BACKEND

    if backend == "memory":
        from app.services.memory_store import InMemoryStore

        store: KeyValueStore = InMemoryStore()

    elif backend == "redis":
        from app.services.redis_store import RedisStore

        store = RedisStore.from_url(
            settings.REDIS_URL,
            key_prefix=settings.REDIS_KEY_PREFIX,
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )

    elif backend == "firestore":
        from app.services import firestore_service

        try:
            client = firestore_service.get_client()
        except firestore_service.FirestoreConfigurationError as e:
            raise StoreConfigurationError(str(e)) from e
        store = firestore_service.FirestoreStore(
            client,
            collection=settings.FIRESTORE_COLLECTION,
            timeout=settings.STORE_TIMEOUT_SECONDS,
        )

    else:
        raise StoreConfigurationError(f"Unknown STORE_BACKEND: {backend}")

    logger.info("Key-value store initialized", extra={"store_backend": backend})
    return store
