"""Domain error taxonomy.

Every error a service raises derives from :class:`LibraryError` and carries
the HTTP status the API layer answers with.
"""


class LibraryError(Exception):
    """Base exception for library errors."""

    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__

    @property
    def code(self) -> str:
        return type(self).__name__


class NotAuthenticated(LibraryError):
    """Authentication required."""

    status_code = 401


class NotAuthorized(LibraryError):
    """You do not have permission to perform this action."""

    status_code = 403


class NotFound(LibraryError):
    """Resource not found."""

    status_code = 404


class BookUnavailable(LibraryError):
    """No copy of this book is currently available."""

    status_code = 409


class AlreadyReturned(LibraryError):
    """This borrowing has already been returned."""

    status_code = 409


class ExtensionLimitReached(LibraryError):
    """All extensions for this borrowing have been used."""

    status_code = 409


class NotValidated(LibraryError):
    """This borrowing must be validated by staff before it can be extended."""

    status_code = 409


class InventoryConstraintViolated(LibraryError):
    """Copy counts would leave the allowed range."""

    status_code = 409


class ValidationError(LibraryError):
    """Invalid input."""

    status_code = 422


class TransientServiceError(LibraryError):
    """The backend is temporarily unavailable, please try again."""

    status_code = 503
