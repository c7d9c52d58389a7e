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
"""Application configuration using pydantic BaseSettings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.models.plan import plan_key_fields


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Service configuration
    PORT: int = Field(default=8080, description="Port to run the service on", ge=1, le=65535)

    SERVICE_NAME: str = Field(default="plan-store", description="Name of the service for logging")

    API_BASE_PATH: str = Field(
        default="/api/v1", description="Path prefix the plans router is mounted under"
    )

    # Authentication
    GOOGLE_OAUTH_CLIENT_ID: str = Field(
        default="",
        description=(
            "OAuth client ID that bearer ID tokens must be issued for (audience claim). "
            "Requests cannot be authenticated while this is empty."
        ),
    )

    # Key-value store configuration
    STORE_BACKEND: Literal["memory", "redis", "firestore"] = Field(
        default="memory", description="Key-value backend holding plan documents"
    )

    STORE_TIMEOUT_SECONDS: float = Field(
        default=5.0, description="Upper bound for a single store call in seconds", gt=0
    )

    REDIS_URL: str = Field(
        default="redis://localhost:6379/0", description="Redis connection URL"
    )

    REDIS_KEY_PREFIX: str = Field(default="plan:", description="Prefix applied to Redis keys")

    FIRESTORE_PROJECT_ID: str = Field(default="", description="GCP project ID for Firestore")

    FIRESTORE_COLLECTION: str = Field(
        default="plans", description="Firestore collection holding plan documents"
    )

    GOOGLE_APPLICATION_CREDENTIALS: str = Field(
        default="", description="Path to GCP service account credentials JSON file"
    )

    # Document configuration
    PLAN_KEY_FIELD: str = Field(
        default="objectId", description="Top-level document field used as the plan key"
    )

    @field_validator("API_BASE_PATH")
    @classmethod
    def normalize_base_path(cls, v: str) -> str:
        """Ensure the base path has a leading slash and no trailing slash."""
        v = v.strip().rstrip("/")
        if v and not v.startswith("/"):
            v = "/" + v
        return v

    @field_validator("PLAN_KEY_FIELD")
    @classmethod
    def check_plan_key_field(cls, v: str) -> str:
        """Only a top-level string field of the plan schema can hold the key."""
        allowed = plan_key_fields()
        if v not in allowed:
            raise ValueError(
                f"PLAN_KEY_FIELD must be one of {sorted(allowed)}, got '{v}'"
            )
        return v

    def model_post_init(self, __context):
        """Warn about configuration that will make requests fail at runtime."""
        logger = logging.getLogger(__name__)

        if not self.GOOGLE_OAUTH_CLIENT_ID:
            logger.warning(
                "GOOGLE_OAUTH_CLIENT_ID not set. "
                "Every bearer token will fail verification."
            )

        if self.STORE_BACKEND == "firestore" and not self.FIRESTORE_PROJECT_ID:
            logger.warning(
                "STORE_BACKEND is firestore but FIRESTORE_PROJECT_ID is not set. "
                "Firestore operations may fail."
            )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()
