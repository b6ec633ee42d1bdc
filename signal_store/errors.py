"""Error taxonomy for the ingestion and retrieval core.

Every error carries a stable ``code`` (returned to callers in structured
results) and a ``status_code`` hint the HTTP layer uses to pick a response
code. Core entry points catch these and report them as results instead of
letting them escape.
"""


class SignalStoreError(Exception):
    code = "SignalStoreError"
    status_code = 500

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class SessionNotFound(SignalStoreError):
    """Session not found or access denied"""

    code = "SessionNotFound"
    status_code = 404


class SessionExists(SignalStoreError):
    """Session with this ID already exists"""

    code = "SessionExists"
    status_code = 409


class SessionNotActive(SignalStoreError):
    """Session is not active"""

    code = "SessionNotActive"
    status_code = 409


class SessionAlreadyCompleted(SignalStoreError):
    """Session already completed"""

    code = "SessionAlreadyCompleted"
    status_code = 200


class BatchIntegrityError(SignalStoreError):
    """Batch data validation failed"""

    code = "BatchIntegrityError"
    status_code = 400

    def __init__(self, errors: list[str], message: str | None = None):
        super().__init__(message)
        self.errors = errors


class ChunkIntegrityError(SignalStoreError):
    """Chunk payload violates the timestamps/channels length invariant"""

    code = "ChunkIntegrityError"
    status_code = 500


class DuplicateKey(SignalStoreError):
    """Chunk sequence index already exists for this session"""

    code = "DuplicateKey"
    status_code = 409


class DataUnavailable(SignalStoreError):
    """No data to finalize"""

    code = "DataUnavailable"
    status_code = 200


class InvalidQuery(SignalStoreError):
    """Invalid query parameters"""

    code = "InvalidQuery"
    status_code = 422


class StorageError(SignalStoreError):
    """Storage backend error"""

    code = "StorageError"
    status_code = 500
