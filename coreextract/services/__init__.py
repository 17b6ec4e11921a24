from coreextract.services.error_codes import ErrorCode
from coreextract.services.exceptions import (
    CollaboratorError,
    EnrichmentError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    TransientStoreError,
)

__all__ = [
    "ErrorCode",
    "ServiceError",
    "NotFoundError",
    "InvalidStateError",
    "TransientStoreError",
    "EnrichmentError",
    "CollaboratorError",
]
