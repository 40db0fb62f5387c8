"""Error taxonomy shared by the core and the HTTP layer.

Every error carries the HTTP status it maps to and a short message that is
safe to show to the caller.
"""


class StarkeeperError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequest(StarkeeperError):
    status_code = 400
    default_message = "Bad request"


class Unauthorized(StarkeeperError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(StarkeeperError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(StarkeeperError):
    status_code = 404
    default_message = "Not found"


class Conflict(StarkeeperError):
    status_code = 409
    default_message = "Conflict"


class StorageError(StarkeeperError):
    status_code = 502
    default_message = "Storage error"


class ServerError(StarkeeperError):
    status_code = 500
    default_message = "Server error"
