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
"""Plan storage with optimistic concurrency through entity tags.

Every operation performs one store read before deciding and at most one
store write (or delete) after deciding to proceed. Validation and
precondition checks always run before the write, so a rejected request never
modifies the store.

The read-then-write sequence is not atomic. Two writers presenting the same
tag can both pass the check and both write; the second write wins. Clients
detect being overtaken on their next conditional request.
"""

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from app.models.plan import validate_plan_document
from app.services.etag import canonical_json, etag_matches, tag_of
from app.services.store import KeyValueStore

logger = logging.getLogger(__name__)

SchemaValidator = Callable[[Any], list[dict[str, str]]]

# A key must address a single URL path segment and be a legal document ID in
# every backend. Firestore reserves "." and ".." and IDs of the form __x__.
_RESERVED_KEY = re.compile(r"^__.*__$")


def key_problem(key: str) -> str | None:
    """Describe why a key cannot be stored, or return None when it can."""
    if "/" in key:
        return "Plan key must not contain '/'"
    if key in (".", ".."):
        return "Plan key must not be '.' or '..'"
    if _RESERVED_KEY.match(key):
        return "Plan keys of the form __name__ are reserved"
    return None


class PlanValidationError(Exception):
    """Raised when a document fails structural validation."""

    def __init__(self, message: str, errors: list[dict[str, str]]):
        super().__init__(message)
        self.errors = errors


class PlanConflictError(Exception):
    """Raised on create when a plan with the same key already exists."""

    def __init__(self, key: str, document: dict[str, Any], tag: str):
        super().__init__(f"Plan {key} already exists")
        self.key = key
        self.document = document
        self.tag = tag


class PlanNotFoundError(Exception):
    """Raised when no plan is stored under the requested key."""

    def __init__(self, key: str):
        super().__init__(f"Plan {key} not found")
        self.key = key


class PreconditionFailedError(Exception):
    """Raised when If-Match does not match the stored plan's tag."""

    def __init__(self, key: str, current_tag: str):
        super().__init__(f"Precondition failed for plan {key}")
        self.key = key
        self.current_tag = current_tag


@dataclass(frozen=True)
class PlanResult:
    """A plan document together with its key and current entity tag."""

    key: str
    document: dict[str, Any]
    tag: str
    not_modified: bool = False


class PlanService:
    """
    Evaluate conditional requests against the key-value store.

    Args:
        store: Key-value store holding canonical plan bytes
        key_field: Top-level document field holding the plan key
        validator: Schema gate returning a list of violations
    """

    def __init__(
        self,
        store: KeyValueStore,
        key_field: str = "objectId",
        validator: SchemaValidator = validate_plan_document,
    ) -> None:
        self._store = store
        self._key_field = key_field
        self._validate = validator

    def _require_valid(self, document: Any) -> None:
        errors = self._validate(document)
        if errors:
            raise PlanValidationError("Plan document failed schema validation", errors)

    def _key_of(self, document: dict[str, Any]) -> str:
        key = document.get(self._key_field)
        if not isinstance(key, str) or not key.strip():
            raise PlanValidationError(
                f"Plan document must contain a non-empty string '{self._key_field}'",
                [
                    {
                        "loc": self._key_field,
                        "msg": "Plan key is missing or empty",
                        "type": "missing_key",
                    }
                ],
            )
        problem = key_problem(key)
        if problem:
            raise PlanValidationError(
                problem,
                [{"loc": self._key_field, "msg": problem, "type": "invalid_key"}],
            )
        return key

    def _require_key(self, document: dict[str, Any], key: str) -> None:
        if self._key_of(document) != key:
            raise PlanValidationError(
                f"'{self._key_field}' must match the plan key in the URL",
                [
                    {
                        "loc": self._key_field,
                        "msg": f"Expected '{key}'",
                        "type": "key_mismatch",
                    }
                ],
            )

    def _load(self, key: str) -> tuple[dict[str, Any], str]:
        # Nothing can be stored under an unusable key.
        if key_problem(key):
            raise PlanNotFoundError(key)
        raw = self._store.get(key)
        if raw is None:
            raise PlanNotFoundError(key)
        return json.loads(raw), tag_of(raw)

    def _save(self, key: str, document: dict[str, Any]) -> PlanResult:
        raw = canonical_json(document)
        self._store.set(key, raw)
        return PlanResult(key=key, document=document, tag=tag_of(raw))

    def create(self, document: Any) -> PlanResult:
        """
        Store a new plan under the key taken from the document.

        Raises:
            PlanValidationError: Document invalid or missing its key
            PlanConflictError: A plan already exists under the key
        """
        self._require_valid(document)
        key = self._key_of(document)

        existing = self._store.get(key)
        if existing is not None:
            raise PlanConflictError(key, json.loads(existing), tag_of(existing))

        result = self._save(key, document)
        logger.info("Plan created", extra={"plan_key": key, "etag": result.tag})
        return result

    def read(self, key: str, if_none_match: str | None = None) -> PlanResult:
        """
        Fetch a plan.

        Returns a result with ``not_modified`` set when If-None-Match matches
        the current tag.

        Raises:
            PlanNotFoundError: No plan stored under key
        """
        document, tag = self._load(key)
        if if_none_match is not None and etag_matches(tag, if_none_match, weak=True):
            return PlanResult(key=key, document=document, tag=tag, not_modified=True)
        return PlanResult(key=key, document=document, tag=tag)

    def replace(self, key: str, document: Any, if_match: str | None) -> PlanResult:
        """
        Overwrite a plan wholesale.

        The body is validated before the store is read. A missing If-Match
        never matches.

        Raises:
            PlanValidationError: Body invalid or keyed differently from the URL
            PlanNotFoundError: No plan stored under key
            PreconditionFailedError: If-Match missing or stale
        """
        self._require_valid(document)
        self._require_key(document, key)

        _, current_tag = self._load(key)
        if not etag_matches(current_tag, if_match, weak=False):
            raise PreconditionFailedError(key, current_tag)

        result = self._save(key, document)
        logger.info(
            "Plan replaced",
            extra={"plan_key": key, "previous_etag": current_tag, "etag": result.tag},
        )
        return result

    def update(self, key: str, changes: Any, if_match: str | None) -> PlanResult:
        """
        Shallow-merge changes into a stored plan.

        Top-level fields in ``changes`` overwrite stored ones; nested objects
        and arrays are replaced, not merged. The merged document is validated
        before it is written.

        Raises:
            PlanValidationError: Changes not an object, or merged plan invalid
            PlanNotFoundError: No plan stored under key
            PreconditionFailedError: If-Match missing or stale
        """
        if not isinstance(changes, dict):
            raise PlanValidationError(
                "Partial update body must be a JSON object",
                [{"loc": "$", "msg": "Expected a JSON object", "type": "object_type"}],
            )

        stored, current_tag = self._load(key)
        if not etag_matches(current_tag, if_match, weak=False):
            raise PreconditionFailedError(key, current_tag)

        merged = {**stored, **changes}
        self._require_valid(merged)
        self._require_key(merged, key)

        result = self._save(key, merged)
        logger.info(
            "Plan updated",
            extra={
                "plan_key": key,
                "fields": sorted(changes),
                "previous_etag": current_tag,
                "etag": result.tag,
            },
        )
        return result

    def delete(self, key: str, if_match: str | None = None) -> None:
        """
        Delete a plan, optionally guarded by If-Match.

        Raises:
            PlanNotFoundError: No plan stored under key, or it vanished
                before the delete was applied
            PreconditionFailedError: If-Match supplied and stale
        """
        _, current_tag = self._load(key)
        if if_match is not None and not etag_matches(
            current_tag, if_match, weak=False
        ):
            raise PreconditionFailedError(key, current_tag)

        if self._store.delete(key) == 0:
            raise PlanNotFoundError(key)
        logger.info("Plan deleted", extra={"plan_key": key, "etag": current_tag})
