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
"""Firestore service integration with credential-aware initialization."""

import logging
from functools import lru_cache

from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore

from app.config import get_settings
from app.services.store import StoreUnavailableError

logger = logging.getLogger(__name__)

BODY_FIELD = "body"


class FirestoreConfigurationError(Exception):
    """Raised when Firestore configuration is invalid or missing."""

    pass


@lru_cache(maxsize=1)
def get_client() -> firestore.Client:
    """
    Get a singleton Firestore client instance.

    Uses Application Default Credentials (ADC) and the FIRESTORE_PROJECT_ID
    from settings to initialize the client. The client is cached using
    @lru_cache to ensure only one instance exists.

    Returns:
        firestore.Client: Initialized Firestore client

    Raises:
        FirestoreConfigurationError: If FIRESTORE_PROJECT_ID is not configured
        FirestoreConfigurationError: If Application Default Credentials are not available
    """
    settings = get_settings()

    if not settings.FIRESTORE_PROJECT_ID:
        raise FirestoreConfigurationError(
            "FIRESTORE_PROJECT_ID is not configured. "
            "Please set the FIRESTORE_PROJECT_ID environment variable to your GCP project ID."
        )

    try:
        client = firestore.Client(project=settings.FIRESTORE_PROJECT_ID)
        logger.info(f"Firestore client initialized for project: {settings.FIRESTORE_PROJECT_ID}")
        return client
    except auth_exceptions.DefaultCredentialsError as e:
        raise FirestoreConfigurationError(
            "Application Default Credentials (ADC) not found. "
            "Please set GOOGLE_APPLICATION_CREDENTIALS environment variable to the path "
            "of your service account JSON key file, or run 'gcloud auth application-default login' "
            "for local development. "
            f"Original error: {str(e)}"
        ) from e
    except Exception as e:
        raise FirestoreConfigurationError(f"Failed to initialize Firestore client: {str(e)}") from e


class FirestoreStore:
    """
    Key-value store over a single Firestore collection.

    Each plan key maps to the document ``{collection}/{key}`` holding the
    serialized plan as a string in the ``body`` field. Every API call is
    bounded by the configured timeout.
    """

    def __init__(
        self, client: firestore.Client, collection: str = "plans", timeout: float = 5.0
    ) -> None:
        self._client = client
        self._collection = collection
        self._timeout = timeout

    def _doc(self, key: str):
        return self._client.collection(self._collection).document(key)

    def get(self, key: str) -> bytes | None:
        try:
            snapshot = self._doc(key).get(timeout=self._timeout)
        except gcp_exceptions.GoogleAPICallError as e:
            error_msg = f"Firestore API error reading {self._collection}/{key}: {str(e)}"
            logger.error(error_msg)
            raise StoreUnavailableError(error_msg) from e

        if not snapshot.exists:
            return None

        data = snapshot.to_dict() or {}
        body = data.get(BODY_FIELD)
        if body is None:
            logger.warning(
                f"Document {self._collection}/{key} has no {BODY_FIELD} field, treating as absent"
            )
            return None
        return body.encode("utf-8")

    def set(self, key: str, value: bytes) -> None:
        try:
            self._doc(key).set({BODY_FIELD: value.decode("utf-8")}, timeout=self._timeout)
        except gcp_exceptions.GoogleAPICallError as e:
            error_msg = f"Firestore API error writing {self._collection}/{key}: {str(e)}"
            logger.error(error_msg)
            raise StoreUnavailableError(error_msg) from e

    def delete(self, key: str) -> int:
        # exists=True makes the delete fail with NotFound instead of silently succeeding
        try:
            self._doc(key).delete(
                option=self._client.write_option(exists=True), timeout=self._timeout
            )
        except gcp_exceptions.NotFound:
            return 0
        except gcp_exceptions.GoogleAPICallError as e:
            error_msg = f"Firestore API error deleting {self._collection}/{key}: {str(e)}"
            logger.error(error_msg)
            raise StoreUnavailableError(error_msg) from e
        return 1

    def ping(self) -> None:
        """
        Verify Firestore connectivity with a single read.

        Reads a document that is not expected to exist; only API failures
        are treated as unavailability.
        """
        try:
            self._doc("__readiness__").get(timeout=self._timeout)
        except gcp_exceptions.GoogleAPICallError as e:
            raise StoreUnavailableError(f"Firestore ping failed: {str(e)}") from e

    def close(self) -> None:
        try:
            self._client.close()
        except Exception as e:
            logger.warning(f"Failed to close Firestore client cleanly: {str(e)}")
