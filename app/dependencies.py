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
"""Shared dependencies for dependency injection."""

import json
import logging
from functools import lru_cache
from typing import Any

from fastapi import Depends, Header, HTTPException, Request, status

from app.auth import (
    GoogleIdTokenVerifier,
    IdentityVerifier,
    MissingCredentialsError,
    TokenVerificationError,
    parse_bearer_token,
)
from app.config import Settings, get_settings
from app.services.plan_service import PlanService
from app.services.store import KeyValueStore, create_store

logger = logging.getLogger(__name__)


def get_cached_settings() -> Settings:
    """
    Get cached settings instance for dependency injection.

    This wraps get_settings() which is already cached with @lru_cache.
    """
    return get_settings()


@lru_cache(maxsize=1)
def get_store() -> KeyValueStore:
    """
    Get the process-wide key-value store.

    The store is built once from settings and shared by every request. Tests
    replace it through ``app.dependency_overrides``.

    Raises:
        StoreConfigurationError: If the configured backend cannot be built
    """
    return create_store(get_settings())


def close_store() -> None:
    """Close the shared store if it was created and forget it."""
    if get_store.cache_info().currsize:
        get_store().close()
    get_store.cache_clear()


def get_plan_service(
    store: KeyValueStore = Depends(get_store),
    settings: Settings = Depends(get_cached_settings),
) -> PlanService:
    """Build a PlanService bound to the shared store."""
    return PlanService(store, key_field=settings.PLAN_KEY_FIELD)


@lru_cache(maxsize=1)
def get_identity_verifier() -> IdentityVerifier:
    """Get the Google ID token verifier configured with the OAuth client ID."""
    return GoogleIdTokenVerifier(audience=get_settings().GOOGLE_OAUTH_CLIENT_ID)


def require_claims(
    authorization: str | None = Header(default=None, alias="Authorization"),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> dict[str, Any]:
    """
    Authenticate the request from its bearer token.

    Returns:
        dict: Verified token claims

    Raises:
        HTTPException: 401 when credentials are missing or malformed,
            403 when the token fails verification
    """
    try:
        token = parse_bearer_token(authorization)
    except MissingCredentialsError as e:
        logger.warning(f"Unauthenticated request: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unauthorized: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    try:
        return verifier.verify(token)
    except TokenVerificationError as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail=f"Forbidden: {str(e)}"
        ) from e


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a valid JSON value")


def _invalid_body(msg: str, error_type: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={
            "message": "Invalid request body",
            "errors": [{"loc": "body", "msg": msg, "type": error_type}],
        },
    )


async def read_json_body(
    request: Request, claims: dict[str, Any] = Depends(require_claims)
) -> Any:
    """
    Decode the request body as JSON once the caller is authenticated.

    Depending on require_claims keeps unauthenticated requests from reaching
    the parser, so they get 401/403 whatever their body holds.

    Raises:
        HTTPException: 400 when the body is empty or not valid JSON
    """
    raw = await request.body()
    if not raw.strip():
        raise _invalid_body("Field required", "missing")
    try:
        return json.loads(raw, parse_constant=_reject_constant)
    except ValueError as e:
        logger.info("Rejected request body that is not valid JSON")
        raise _invalid_body(f"JSON decode error: {e}", "json_invalid") from e
