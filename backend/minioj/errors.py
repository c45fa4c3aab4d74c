"""Error taxonomy shared by the store, the judge client and the HTTP layer."""


class OJError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(OJError):
    """Malformed client request or judge callback. Never retried."""

    status_code = 400


class NotFoundError(OJError):
    """Unknown submission, problem, boilerplate, corpus or result id."""

    status_code = 404


class DispatchError(OJError):
    """Judge rejected the job or was unreachable after every retry."""

    status_code = 502


class StorageConflictError(OJError):
    """Lost a conditional transition to a concurrent writer."""

    status_code = 409


class InternalError(OJError):
    status_code = 500
