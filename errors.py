"""Domain errors shared by the storage layer, the API and the client."""


class LoadWizardError(Exception):
    pass


class NotFoundError(LoadWizardError):
    """Unknown configuration or run id."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRunStateError(LoadWizardError):
    """Run status and results disagree (results present iff completed)."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StorageError(LoadWizardError):
    """Connectivity or constraint failure in the underlying store."""


class ApiError(LoadWizardError):
    """Raised by the HTTP client when a request fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
