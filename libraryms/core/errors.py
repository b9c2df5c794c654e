# libraryms/core/errors.py

"""
Error taxonomy shared by services, the API layer and the client.

Every error carries a stable ``code`` (used on the wire) and the HTTP status
the API answers with. The API renders them as ``{"error": code, "detail": msg}``
and the client maps that body back to the same class.
"""

from typing import Optional


class LibraryError(Exception):
    code = "library_error"
    status_code = 400

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail}


class ValidationError(LibraryError):
    """Invalid input."""
    code = "validation_error"
    status_code = 422


class Forbidden(LibraryError):
    """You don't have permission to perform this action."""
    code = "forbidden"
    status_code = 403


class NotAuthenticated(LibraryError):
    """Authentication required."""
    code = "not_authenticated"
    status_code = 401


class NotFound(LibraryError):
    """Resource not found."""
    code = "not_found"
    status_code = 404


class MemberBlacklisted(LibraryError):
    """This member is blacklisted and cannot borrow books."""
    code = "member_blacklisted"
    status_code = 409


class BookUnavailable(LibraryError):
    """No copies of this book are available."""
    code = "book_unavailable"
    status_code = 409


class AlreadyReturned(LibraryError):
    """This transaction has already been returned."""
    code = "already_returned"
    status_code = 409


class PartialFailure(LibraryError):
    """The operation was only partially applied."""
    code = "partial_failure"
    status_code = 500

    def __init__(self, detail: Optional[str] = None, *, compensated: bool = False):
        super().__init__(detail)
        self.compensated = compensated

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["compensated"] = self.compensated
        return data


class TransportError(LibraryError):
    """The backend could not be reached. Please try again."""
    code = "transport_error"
    status_code = 503


class InvalidCredentials(LibraryError):
    """Invalid credentials."""
    code = "invalid_credentials"
    status_code = 401


class EmailInUse(LibraryError):
    """Email already registered."""
    code = "email_in_use"
    status_code = 409


class WeakPassword(LibraryError):
    """Password is too weak."""
    code = "weak_password"
    status_code = 422


class SessionBusy(LibraryError):
    """Another sign-in is already in progress."""
    code = "session_busy"
    status_code = 409


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        ValidationError,
        Forbidden,
        NotAuthenticated,
        NotFound,
        MemberBlacklisted,
        BookUnavailable,
        AlreadyReturned,
        PartialFailure,
        TransportError,
        InvalidCredentials,
        EmailInUse,
        WeakPassword,
        SessionBusy,
    )
}


def error_from_payload(payload: dict) -> LibraryError:
    """Rebuild a LibraryError from an API error body."""
    cls = ERRORS_BY_CODE.get(payload.get("error"), LibraryError)
    detail = payload.get("detail")
    if not isinstance(detail, str):
        detail = str(detail) if detail is not None else None
    if cls is PartialFailure:
        return PartialFailure(detail, compensated=bool(payload.get("compensated")))
    return cls(detail)
