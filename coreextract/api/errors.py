from fastapi import HTTPException

from coreextract.services.exceptions import (
    CollaboratorError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    TransientStoreError,
)


def http_error_from_service(err: ServiceError) -> HTTPException:
    if isinstance(err, NotFoundError):
        status = 404
    elif isinstance(err, InvalidStateError):
        status = 409
    elif isinstance(err, TransientStoreError):
        status = 503
    elif isinstance(err, CollaboratorError):
        status = 502
    else:
        status = 500

    return HTTPException(
        status_code=status,
        detail={"code": err.code, "message": err.message},
    )
