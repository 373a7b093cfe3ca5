class NotFoundError(ValueError):
    """Entity is absent or not visible to the acting principal."""


class InvalidOperationError(ValueError):
    """Structurally disallowed move/copy target, including malformed parent references."""


class PermissionDeniedError(PermissionError):
    pass


class StorageFailureError(RuntimeError):
    pass
