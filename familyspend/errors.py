"""
Error taxonomy shared by every component.

Storage failures live in services.storage.interface. Extraction failures
live in services.extraction and derive from FinanceError. This module holds
the kinds that cut across components: rejected input, advisory
authorization, conflicts, failed loads.
"""


class FinanceError(Exception):
    """Base exception for everything the core raises on purpose."""
    pass


class InputRejectedError(FinanceError):
    """Input refused before any network call was made."""
    pass


class ImageTooLargeError(InputRejectedError):
    """Receipt image exceeds the upload size cap."""

    def __init__(self, size_bytes: int, limit_bytes: int):
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            f"Image is {size_bytes} bytes; the limit is {limit_bytes} bytes"
        )


class UnsupportedImageError(InputRejectedError):
    """Bytes are not a readable image in a supported format."""
    pass


class AuthorizationError(FinanceError):
    """
    Caller lacks the family role an operation needs.

    This check is advisory: the backend's row-level policy is authoritative.
    """

    def __init__(self, family_id: str, required_role: str, message: str = ""):
        self.family_id = family_id
        self.required_role = required_role
        super().__init__(
            message or f"This action needs the {required_role} role in family {family_id}"
        )


class ConflictError(FinanceError):
    """Operation conflicts with existing state."""
    pass


class DuplicateInvitationError(ConflictError):
    """A pending invitation for this email and family already exists."""
    pass


class AlreadyMemberError(ConflictError):
    """The user is already a member of the family."""
    pass


class LastAdminError(ConflictError):
    """The change would leave the family without an admin."""
    pass


class LoadError(FinanceError):
    """A read failed; distinct from a read that returned zero rows."""
    pass


class SummaryLoadError(LoadError):
    """Spending summary for a scope and window could not be loaded."""
    pass


class AccountNotAvailableError(FinanceError):
    """The account id is not among the user's available accounts."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account {account_id} is not available to this user")
