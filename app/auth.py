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
"""Bearer token authentication against Google-issued ID tokens."""

import logging
from typing import Any, Protocol

from google.auth.exceptions import GoogleAuthError
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

logger = logging.getLogger(__name__)

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")


class MissingCredentialsError(Exception):
    """Raised when the Authorization header is missing or malformed."""

    pass


class TokenVerificationError(Exception):
    """Raised when a bearer token is present but fails verification."""

    pass


class IdentityVerifier(Protocol):
    """Verifies a bearer token and returns its claims."""

    def verify(self, token: str) -> dict[str, Any]:
        ...


def parse_bearer_token(authorization: str | None) -> str:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header.

    Args:
        authorization: Raw Authorization header value

    Returns:
        str: The bearer token

    Raises:
        MissingCredentialsError: If the header is absent, uses another scheme,
            or carries no token
    """
    if not authorization:
        raise MissingCredentialsError("Missing Authorization header")

    if not authorization.startswith("Bearer "):
        raise MissingCredentialsError("Authorization header must use the Bearer scheme")

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise MissingCredentialsError("Authorization header carries an empty token")
    return token


class GoogleIdTokenVerifier:
    """
    Verify Google-signed OAuth2 ID tokens.

    Checks signature, expiry, audience (the OAuth client ID) and issuer.
    Google's public certificates are fetched by google-auth through the
    requests transport.
    """

    def __init__(self, audience: str, request: google_requests.Request | None = None) -> None:
        self._audience = audience
        self._request = request or google_requests.Request()

    def verify(self, token: str) -> dict[str, Any]:
        """
        Verify a token and return its claims.

        Args:
            token: Raw ID token (without 'Bearer ' prefix)

        Returns:
            dict: Decoded token claims

        Raises:
            TokenVerificationError: If the token fails any check
        """
        if not self._audience:
            logger.warning("ID token rejected: GOOGLE_OAUTH_CLIENT_ID is not configured")
            raise TokenVerificationError("Token audience is not configured")

        try:
            claims = id_token.verify_oauth2_token(token, self._request, audience=self._audience)
        except (GoogleAuthError, ValueError) as e:
            # ValueError covers malformed tokens, expiry and audience mismatch
            logger.warning(
                f"ID token verification failed: {str(e)}",
                extra={"error_type": type(e).__name__},
            )
            raise TokenVerificationError(f"Token verification failed: {str(e)}") from e

        issuer = claims.get("iss")
        if issuer not in GOOGLE_ISSUERS:
            logger.warning(
                "ID token verification failed: issuer mismatch",
                extra={"actual_issuer": issuer},
            )
            raise TokenVerificationError(f"Unexpected token issuer: {issuer}")

        logger.info(
            "ID token verified",
            extra={"subject": claims.get("sub"), "email": claims.get("email")},
        )
        return claims
