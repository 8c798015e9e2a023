"""Translation of service-layer exceptions into HTTP errors."""

from __future__ import annotations

from fastapi import HTTPException, status

from logistics_backend.domain.constraints import InvalidAllocationError
from logistics_backend.repository.data_repository import StorageConflictError
from logistics_backend.services.access_service import (
    AccessLinkExpiredError,
    AccessLinkNotFoundError,
    AccessLinkValidationError,
)
from logistics_backend.services.assignment_service import (
    AlreadySubmittedError,
    AssignmentNotFoundError,
    AssignmentValidationError,
)
from logistics_backend.services.auth_service import (
    AuthenticationError,
    PermissionDeniedError,
)
from logistics_backend.services.container_service import (
    ContainerNotFoundError,
    ContainerValidationError,
)
from logistics_backend.services.form_service import (
    FormNotFoundError,
    FormStateError,
    FormValidationError,
)
from logistics_backend.services.notification_service import (
    NotificationNotFoundError,
    PreferenceValidationError,
)
from logistics_backend.services.user_service import UserNotFoundError, UserValidationError


BAD_REQUEST_ERRORS = (
    InvalidAllocationError,
    FormValidationError,
    ContainerValidationError,
    AssignmentValidationError,
    UserValidationError,
    AccessLinkValidationError,
    PreferenceValidationError,
)
NOT_FOUND_ERRORS = (
    FormNotFoundError,
    ContainerNotFoundError,
    AssignmentNotFoundError,
    NotificationNotFoundError,
    UserNotFoundError,
    AccessLinkNotFoundError,
)
CONFLICT_ERRORS = (AlreadySubmittedError, FormStateError, StorageConflictError)

DOMAIN_ERRORS = (
    *BAD_REQUEST_ERRORS,
    *NOT_FOUND_ERRORS,
    *CONFLICT_ERRORS,
    AuthenticationError,
    PermissionDeniedError,
    AccessLinkExpiredError,
)


def to_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, BAD_REQUEST_ERRORS):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, AuthenticationError):
        code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(exc, PermissionDeniedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, NOT_FOUND_ERRORS):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, CONFLICT_ERRORS):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, AccessLinkExpiredError):
        code = status.HTTP_410_GONE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(exc))


def internal_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
    )
