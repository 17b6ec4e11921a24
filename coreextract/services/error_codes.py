from enum import Enum


class ErrorCode(str, Enum):
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"

    RESULT_REQUIRED = "RESULT_REQUIRED"
    PAYLOAD_REQUIRED = "PAYLOAD_REQUIRED"
    INVALID_UPLOAD_OUTCOME = "INVALID_UPLOAD_OUTCOME"
    RESULT_NOT_EDITABLE = "RESULT_NOT_EDITABLE"
    NOTHING_TO_REPROCESS = "NOTHING_TO_REPROCESS"
    EXTRACTION_ALREADY_COMPLETED = "EXTRACTION_ALREADY_COMPLETED"
    NO_EXTRACTED_CONTENT = "NO_EXTRACTED_CONTENT"
    FILE_BUSY = "FILE_BUSY"
    UPLOAD_INCOMPLETE = "UPLOAD_INCOMPLETE"
    JOB_CANCELLED = "JOB_CANCELLED"

    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    ENRICHMENT_LOOKUP_FAILED = "ENRICHMENT_LOOKUP_FAILED"

    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    PROCESSING_FAILED = "PROCESSING_FAILED"
    BLOB_READ_FAILED = "BLOB_READ_FAILED"
