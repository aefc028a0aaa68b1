class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class ReferenceInUseError(AppError):
    pass


class AuthorizationError(AppError):
    pass


class PersistenceError(AppError):
    pass
