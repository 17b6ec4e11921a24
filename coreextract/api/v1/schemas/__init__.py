from coreextract.api.v1.schemas.jobs import (
    JobCreate,
    JobDetailOut,
    JobFileOut,
    JobOut,
    ReprocessOut,
    ReprocessRequest,
    ResultUpdate,
    SummaryOut,
)

__all__ = [
    "JobCreate",
    "JobOut",
    "JobDetailOut",
    "JobFileOut",
    "ReprocessRequest",
    "ReprocessOut",
    "ResultUpdate",
    "SummaryOut",
]
