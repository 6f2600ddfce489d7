"""
Typed exception hierarchy for the back-office kernel.

Every error a service can raise is a subclass of BackofficeError and carries:
  1. a machine-readable ``code`` class attribute,
  2. the HTTP ``status_code`` a REST surface would answer with,
  3. structured attributes (ids, amounts, counts) instead of message parsing.

Callers catch by type.  The message text (``str(exc)``) is the user-facing
sentence and is part of the contract for the operator-facing errors below.

    BackofficeError (500)
    |
    +-- ValidationError (400)
    |   +-- MissingFieldError
    |   +-- InvalidAmountError
    |   +-- InsufficientFloatBalanceError
    |   +-- PaymentSourceNotAllowedError
    |   +-- FloatAccountReferencedError
    |   +-- InvalidThresholdError
    |   +-- BatchQuantityBelowIssuedError
    |   +-- BatchHasIssuedCardsError
    |   +-- NoAvailableBatchError
    |   +-- PackageStateError
    |
    +-- AuthenticationError (401)
    |   +-- OperatorNotFoundError
    |   +-- IncorrectPasswordError
    |
    +-- PermissionDeniedError (403)
    |
    +-- NotFoundError (404)
    |   +-- BranchNotFoundError
    |   +-- FloatAccountNotFoundError
    |   +-- GLAccountNotFoundError
    |   +-- TransactionNotFoundError
    |   +-- BatchNotFoundError
    |   +-- PackageNotFoundError
    |   +-- ExpenseHeadNotFoundError
    |
    +-- ConflictError (409)
    |   +-- DuplicateBatchCodeError
    |   +-- DuplicateCardNumberError
    |   +-- DuplicatePodCollectionError
    |   +-- InvalidStatusTransitionError
    |
    +-- PostingError (500)
        +-- UnbalancedEntryError
        +-- MappingNotFoundError
        +-- PostingRuleNotFoundError
        +-- GLEntryNotFoundError

Propagation: business failures propagate to the caller.  PostingError and
notification/audit failures raised from best-effort side effects are logged
and swallowed by TransactionRecorder.
"""

from decimal import Decimal


class BackofficeError(Exception):
    """Base exception for all back-office kernel errors."""

    code: str = "BACKOFFICE_ERROR"
    status_code: int = 500


# Validation (400)


class ValidationError(BackofficeError):
    """Request data is missing or violates a business rule."""

    code: str = "VALIDATION_ERROR"
    status_code: int = 400


class MissingFieldError(ValidationError):
    code: str = "MISSING_FIELD"

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"{field} is required")


class InvalidAmountError(ValidationError):
    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount: Decimal | str | None):
        self.field = field
        self.amount = amount
        super().__init__(f"{field} must be greater than zero (got {amount})")


class InsufficientFloatBalanceError(ValidationError):
    """A debit would take a float account below zero."""

    code: str = "INSUFFICIENT_FLOAT_BALANCE"

    def __init__(
        self,
        account_id: str,
        balance: Decimal,
        requested: Decimal,
        message: str | None = None,
    ):
        self.account_id = account_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            message
            or f"Insufficient float balance on {account_id}: "
            f"balance={balance}, requested={requested}"
        )


class PaymentSourceNotAllowedError(ValidationError):
    code: str = "PAYMENT_SOURCE_NOT_ALLOWED"

    def __init__(self, account_type: str):
        self.account_type = account_type
        super().__init__(f"{account_type} float accounts cannot pay expenses")


class FloatAccountReferencedError(ValidationError):
    """Float account still has transactions pointing at it."""

    code: str = "FLOAT_ACCOUNT_REFERENCED"

    def __init__(self, account_id: str, transaction_count: int):
        self.account_id = account_id
        self.transaction_count = transaction_count
        super().__init__(
            f"Cannot delete float account: {transaction_count} related "
            "transactions exist. Please deactivate the account instead."
        )


class InvalidThresholdError(ValidationError):
    code: str = "INVALID_THRESHOLD"

    def __init__(self, min_threshold: Decimal, max_threshold: Decimal):
        self.min_threshold = min_threshold
        self.max_threshold = max_threshold
        super().__init__(
            f"min_threshold ({min_threshold}) exceeds max_threshold ({max_threshold})"
        )


class BatchQuantityBelowIssuedError(ValidationError):
    code: str = "BATCH_QUANTITY_BELOW_ISSUED"

    def __init__(self, batch_id: str, quantity_received: int, quantity_issued: int):
        self.batch_id = batch_id
        self.quantity_received = quantity_received
        self.quantity_issued = quantity_issued
        super().__init__(
            f"Cannot reduce quantity below issued cards ({quantity_issued})"
        )


class BatchHasIssuedCardsError(ValidationError):
    code: str = "BATCH_HAS_ISSUED_CARDS"

    def __init__(self, batch_id: str, quantity_issued: int):
        self.batch_id = batch_id
        self.quantity_issued = quantity_issued
        super().__init__(
            "Cannot delete batch with issued cards. "
            f"{quantity_issued} cards have been issued from this batch."
        )


class NoAvailableBatchError(ValidationError):
    code: str = "NO_AVAILABLE_BATCH"

    def __init__(self, branch_id: str, card_type: str):
        self.branch_id = branch_id
        self.card_type = card_type
        super().__init__(f"No available {card_type} card batch for this branch")


class PackageStateError(ValidationError):
    code: str = "PACKAGE_STATE"

    def __init__(self, tracking_id: str, status: str, expected: str):
        self.tracking_id = tracking_id
        self.status = status
        self.expected = expected
        super().__init__(
            f"Package {tracking_id} is {status}; expected {expected}"
        )


# Authentication and authorization (401 / 403)


class AuthenticationError(BackofficeError):
    code: str = "AUTHENTICATION_FAILED"
    status_code: int = 401


class OperatorNotFoundError(AuthenticationError):
    code: str = "OPERATOR_NOT_FOUND"

    def __init__(self, operator_id: str):
        self.operator_id = operator_id
        super().__init__("User not found. Please log in again.")


class IncorrectPasswordError(AuthenticationError):
    code: str = "INCORRECT_PASSWORD"

    def __init__(self, operator_id: str):
        self.operator_id = operator_id
        super().__init__("Incorrect password")


class PermissionDeniedError(BackofficeError):
    code: str = "PERMISSION_DENIED"
    status_code: int = 403

    def __init__(self, operator_id: str, role: str, action: str):
        self.operator_id = operator_id
        self.role = role
        self.action = action
        super().__init__(f"Role {role} is not allowed to {action}")


# Not found (404)


class NotFoundError(BackofficeError):
    code: str = "NOT_FOUND"
    status_code: int = 404


class BranchNotFoundError(NotFoundError):
    code: str = "BRANCH_NOT_FOUND"

    def __init__(self, branch_id: str):
        self.branch_id = branch_id
        super().__init__(f"Branch not found: {branch_id}")


class FloatAccountNotFoundError(NotFoundError):
    code: str = "FLOAT_ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str, message: str | None = None):
        self.account_id = account_id
        super().__init__(message or f"Float account not found: {account_id}")


class GLAccountNotFoundError(NotFoundError):
    code: str = "GL_ACCOUNT_NOT_FOUND"

    def __init__(self, account_ref: str):
        self.account_ref = account_ref
        super().__init__(f"GL account not found: {account_ref}")


class TransactionNotFoundError(NotFoundError):
    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, source_module: str, transaction_id: str):
        self.source_module = source_module
        self.transaction_id = transaction_id
        super().__init__(f"{source_module} transaction not found: {transaction_id}")


class BatchNotFoundError(NotFoundError):
    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__("Batch not found")


class PackageNotFoundError(NotFoundError):
    code: str = "PACKAGE_NOT_FOUND"

    def __init__(self, tracking_id: str):
        self.tracking_id = tracking_id
        super().__init__(f"Package not found: {tracking_id}")


class ExpenseHeadNotFoundError(NotFoundError):
    code: str = "EXPENSE_HEAD_NOT_FOUND"

    def __init__(self, expense_head_id: str):
        self.expense_head_id = expense_head_id
        super().__init__(f"Expense head not found: {expense_head_id}")


# Conflict (409)


class ConflictError(BackofficeError):
    code: str = "CONFLICT"
    status_code: int = 409


class DuplicateBatchCodeError(ConflictError):
    code: str = "DUPLICATE_BATCH_CODE"

    def __init__(self, batch_code: str):
        self.batch_code = batch_code
        super().__init__("Batch code already exists")


class DuplicateCardNumberError(ConflictError):
    code: str = "DUPLICATE_CARD_NUMBER"

    def __init__(self, card_number: str):
        self.card_number = card_number
        super().__init__(f"Card number already issued: {card_number}")


class DuplicatePodCollectionError(ConflictError):
    code: str = "DUPLICATE_POD_COLLECTION"

    def __init__(self, tracking_id: str):
        self.tracking_id = tracking_id
        super().__init__(f"POD collection already recorded for {tracking_id}")


class InvalidStatusTransitionError(ConflictError):
    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, transaction_id: str, from_status: str, to_status: str):
        self.transaction_id = transaction_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Transaction {transaction_id} cannot move from {from_status} to {to_status}"
        )


# Posting (500)


class PostingError(BackofficeError):
    """Base exception for general-ledger posting failures."""

    code: str = "POSTING_ERROR"


class UnbalancedEntryError(PostingError):
    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: Decimal, credits: Decimal, source_ref: str = ""):
        self.debits = debits
        self.credits = credits
        self.source_ref = source_ref
        super().__init__(
            f"Unbalanced GL entry {source_ref}: debits={debits}, credits={credits}"
        )


class MappingNotFoundError(PostingError):
    code: str = "GL_MAPPING_NOT_FOUND"

    def __init__(self, transaction_type: str, mapping_type: str, branch_id: str | None):
        self.transaction_type = transaction_type
        self.mapping_type = mapping_type
        self.branch_id = branch_id
        super().__init__(
            f"No GL account mapped for {transaction_type}/{mapping_type} "
            f"(branch {branch_id})"
        )


class PostingRuleNotFoundError(PostingError):
    code: str = "POSTING_RULE_NOT_FOUND"

    def __init__(self, source_module: str, transaction_type: str):
        self.source_module = source_module
        self.transaction_type = transaction_type
        super().__init__(
            f"No posting rule for {source_module}/{transaction_type}"
        )


class GLEntryNotFoundError(PostingError):
    code: str = "GL_ENTRY_NOT_FOUND"
    status_code: int = 404

    def __init__(self, source_module: str, source_transaction_id: str):
        self.source_module = source_module
        self.source_transaction_id = source_transaction_id
        super().__init__(
            f"No GL entry for {source_module} transaction {source_transaction_id}"
        )
