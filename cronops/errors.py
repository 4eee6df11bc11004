class CronOpsError(Exception):
    """Base class for errors that map onto an API response"""
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class ValidationError(CronOpsError):
    status_code = 400


class AuthenticationError(CronOpsError):
    status_code = 401


class AuthorizationError(CronOpsError):
    status_code = 403


class QuotaExceededError(CronOpsError):
    status_code = 403


class NotFoundError(CronOpsError):
    status_code = 404


class ConflictError(CronOpsError):
    status_code = 409


class InvalidTransitionError(CronOpsError):
    """An execution log was asked to leave a terminal state"""
    status_code = 500
