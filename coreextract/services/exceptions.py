from coreextract.services.error_codes import ErrorCode


class ServiceError(Exception):
    def __init__(self, code: str, message: str | None = None) -> None:
        self.code = code
        self.message = message or code
        super().__init__(self.message)


class NotFoundError(ServiceError):
    pass


class InvalidStateError(ServiceError):
    pass


class TransientStoreError(ServiceError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorCode.STORE_UNAVAILABLE.value, message or "store unavailable")


class EnrichmentError(ServiceError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(ErrorCode.ENRICHMENT_LOOKUP_FAILED.value, message)


class CollaboratorError(ServiceError):
    pass
