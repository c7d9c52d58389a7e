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
"""Plan CRUD API endpoints with conditional request support."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from app.dependencies import get_plan_service, read_json_body, require_claims
from app.models.plan import PlanEnvelope
from app.services.etag import format_etag
from app.services.plan_service import (
    PlanConflictError,
    PlanNotFoundError,
    PlanService,
    PlanValidationError,
    PreconditionFailedError,
)
from app.services.store import StoreUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plans", tags=["plans"], dependencies=[Depends(require_claims)])

_AUTH_RESPONSES = {
    401: {
        "description": "Unauthorized - missing or malformed bearer token",
        "content": {
            "application/json": {"example": {"detail": "Unauthorized: Missing Authorization header"}}
        },
    },
    403: {
        "description": "Forbidden - bearer token failed verification",
        "content": {
            "application/json": {"example": {"detail": "Forbidden: Token verification failed"}}
        },
    },
    500: {
        "description": "Internal server error",
        "content": {"application/json": {"example": {"detail": "Internal server error"}}},
    },
}

_NOT_FOUND = {
    404: {
        "description": "Plan not found",
        "content": {"application/json": {"example": {"detail": "Plan not found"}}},
    }
}

_PRECONDITION_FAILED = {
    412: {
        "description": "Precondition failed - If-Match does not match the current ETag",
        "content": {
            "application/json": {
                "example": {"detail": "Precondition Failed: ETag does not match"}
            }
        },
    }
}

_VALIDATION_FAILED = {
    400: {
        "description": "Validation error - document violates the plan schema",
        "content": {
            "application/json": {
                "example": {
                    "detail": {
                        "message": "Plan document failed schema validation",
                        "errors": [
                            {"loc": "planType", "msg": "Field required", "type": "missing"}
                        ],
                    }
                }
            }
        },
    }
}

# Bodies are decoded by read_json_body after authentication, so FastAPI does
# not describe them on its own.
_JSON_BODY = {
    "requestBody": {
        "required": True,
        "content": {"application/json": {"schema": {"type": "object"}}},
    }
}


def _validation_failed(e: PlanValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"message": str(e), "errors": e.errors},
    )


def _not_found(e: PlanNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found")


def _precondition_failed(e: PreconditionFailedError) -> HTTPException:
    logger.info(
        "Conditional request rejected",
        extra={"plan_key": e.key, "current_etag": e.current_tag},
    )
    return HTTPException(
        status_code=status.HTTP_412_PRECONDITION_FAILED,
        detail="Precondition Failed: ETag does not match",
    )


def _internal_error(operation: str, key: str | None, e: Exception) -> HTTPException:
    """Log the failure and return a generic 500 with no internal detail."""
    if isinstance(e, StoreUnavailableError):
        message = f"Plan {operation} failed due to store error"
    else:
        message = f"Plan {operation} failed due to unexpected error"
    logger.error(
        message,
        extra={"plan_key": key, "error": str(e)},
        exc_info=True,
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error"
    )


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=PlanEnvelope,
    responses={
        201: {"description": "Plan created; ETag header carries its tag"},
        409: {
            "description": "Conflict - a plan with this key already exists",
            "content": {
                "application/json": {
                    "example": {
                        "detail": {
                            "message": "Conflict: Plan already exists",
                            "data": {"objectId": "12xvxc345ssdsds-508"},
                        }
                    }
                }
            },
        },
        **_VALIDATION_FAILED,
        **_AUTH_RESPONSES,
    },
    openapi_extra=_JSON_BODY,
)
async def create_plan(
    request: Request,
    response: Response,
    document: Any = Depends(read_json_body),
    service: PlanService = Depends(get_plan_service),
) -> PlanEnvelope:
    """
    Create a new plan.

    The plan key is taken from the document's key field. Creation succeeds
    only when no plan exists under that key; otherwise the stored plan and
    its ETag are returned with 409 Conflict.
    """
    try:
        result = await run_in_threadpool(service.create, document)
    except PlanValidationError as e:
        logger.info("Plan creation rejected by schema", extra={"error_count": len(e.errors)})
        raise _validation_failed(e) from e
    except PlanConflictError as e:
        logger.warning("Plan creation conflict", extra={"plan_key": e.key, "etag": e.tag})
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "Conflict: Plan already exists", "data": e.document},
            headers={"ETag": format_etag(e.tag)},
        ) from e
    except Exception as e:
        raise _internal_error("creation", None, e) from e

    response.headers["ETag"] = format_etag(result.tag)
    response.headers["Location"] = str(request.url_for("get_plan", key=result.key))
    return PlanEnvelope(message="Plan created", data=result.document)


@router.get(
    "/{key}",
    name="get_plan",
    responses={
        200: {"description": "Plan document; ETag header carries its tag"},
        304: {"description": "Not modified - If-None-Match matches the current ETag"},
        **_NOT_FOUND,
        **_AUTH_RESPONSES,
    },
)
async def get_plan(
    key: str,
    if_none_match: str | None = Header(default=None, alias="If-None-Match"),
    service: PlanService = Depends(get_plan_service),
) -> Response:
    """
    Fetch a plan by key.

    Returns 304 Not Modified with an empty body when If-None-Match matches
    the current ETag.
    """
    try:
        result = await run_in_threadpool(service.read, key, if_none_match)
    except PlanNotFoundError as e:
        raise _not_found(e) from e
    except Exception as e:
        raise _internal_error("read", key, e) from e

    headers = {"ETag": format_etag(result.tag)}
    if result.not_modified:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)
    return JSONResponse(content=result.document, headers=headers)


@router.put(
    "/{key}",
    response_model=PlanEnvelope,
    responses={
        200: {"description": "Plan replaced; ETag header carries the new tag"},
        **_VALIDATION_FAILED,
        **_NOT_FOUND,
        **_PRECONDITION_FAILED,
        **_AUTH_RESPONSES,
    },
    openapi_extra=_JSON_BODY,
)
async def replace_plan(
    key: str,
    response: Response,
    document: Any = Depends(read_json_body),
    if_match: str | None = Header(default=None, alias="If-Match"),
    service: PlanService = Depends(get_plan_service),
) -> PlanEnvelope:
    """
    Replace a plan wholesale.

    Requires If-Match with the plan's current ETag. The body must be a
    complete, valid plan whose key equals the URL key.
    """
    try:
        result = await run_in_threadpool(service.replace, key, document, if_match)
    except PlanValidationError as e:
        raise _validation_failed(e) from e
    except PlanNotFoundError as e:
        raise _not_found(e) from e
    except PreconditionFailedError as e:
        raise _precondition_failed(e) from e
    except Exception as e:
        raise _internal_error("replace", key, e) from e

    response.headers["ETag"] = format_etag(result.tag)
    return PlanEnvelope(message="Plan replaced", data=result.document)


@router.patch(
    "/{key}",
    response_model=PlanEnvelope,
    responses={
        200: {"description": "Plan updated; ETag header carries the new tag"},
        **_VALIDATION_FAILED,
        **_NOT_FOUND,
        **_PRECONDITION_FAILED,
        **_AUTH_RESPONSES,
    },
    openapi_extra=_JSON_BODY,
)
async def update_plan(
    key: str,
    response: Response,
    changes: Any = Depends(read_json_body),
    if_match: str | None = Header(default=None, alias="If-Match"),
    service: PlanService = Depends(get_plan_service),
) -> PlanEnvelope:
    """
    Partially update a plan.

    Top-level fields of the body overwrite the stored ones. Nested objects
    and arrays are replaced wholesale, so a caller changing part of a nested
    value must send the whole nested value. Requires If-Match with the
    plan's current ETag; the merged plan must still pass validation.
    """
    try:
        result = await run_in_threadpool(service.update, key, changes, if_match)
    except PlanValidationError as e:
        raise _validation_failed(e) from e
    except PlanNotFoundError as e:
        raise _not_found(e) from e
    except PreconditionFailedError as e:
        raise _precondition_failed(e) from e
    except Exception as e:
        raise _internal_error("update", key, e) from e

    response.headers["ETag"] = format_etag(result.tag)
    return PlanEnvelope(message="Plan updated", data=result.document)


@router.delete(
    "/{key}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={
        204: {"description": "Plan deleted"},
        **_NOT_FOUND,
        **_PRECONDITION_FAILED,
        **_AUTH_RESPONSES,
    },
)
async def delete_plan(
    key: str,
    if_match: str | None = Header(default=None, alias="If-Match"),
    service: PlanService = Depends(get_plan_service),
) -> Response:
    """
    Delete a plan.

    If-Match is optional; when supplied it must match the current ETag.
    """
    try:
        await run_in_threadpool(service.delete, key, if_match)
    except PlanNotFoundError as e:
        raise _not_found(e) from e
    except PreconditionFailedError as e:
        raise _precondition_failed(e) from e
    except Exception as e:
        raise _internal_error("delete", key, e) from e

    return Response(status_code=status.HTTP_204_NO_CONTENT)
