from django.core.exceptions import ValidationError


class BalanceIntegrityError(Exception):
    """Raised when a posting or recalculation would break ledger integrity."""
    pass


class UnbalancedEntriesError(BalanceIntegrityError):
    """Raised when a set of ledger entries fails the debits = credits check."""

    def __init__(self, total_debit, total_credit, transaction_ref=None):
        self.total_debit = total_debit
        self.total_credit = total_credit
        self.transaction_ref = transaction_ref
        where = f" for {transaction_ref}" if transaction_ref else ""
        super().__init__(
            f"Ledger entries not balanced{where}: "
            f"debits={total_debit}, credits={total_credit}"
        )


class EntityInUseError(Exception):
    """
    Raised when deleting something other records still depend on.
    Carries enough detail for the caller to resolve it by hand.
    """

    code = "entity_in_use"

    def __init__(self, entity_type, entity_id, reason, references=None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        self.references = list(references or [])
        super().__init__(f"{entity_type} {entity_id} is in use: {reason}")

    def as_dict(self):
        return {
            "error": self.code,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "reason": self.reason,
            "references": self.references,
        }


class AccountInUse(EntityInUseError):
    code = "account_in_use"


class CreditInUse(EntityInUseError):
    code = "credit_in_use"


class ConfigurationError(Exception):
    """A required well-known account (AR, AP, FX gain/loss...) is missing."""

    def __init__(self, message, role=None):
        self.role = role
        super().__init__(message)


class NotFoundError(Exception):
    def __init__(self, entity_type, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} does not exist")


class ExternalServiceError(Exception):
    """An outside provider (exchange rates, bank feed) failed."""

    def __init__(self, service, message):
        self.service = service
        super().__init__(f"{service}: {message}")


class PaymentExceedsBalance(ValidationError):
    """Raised when an allocation is larger than what is still owed."""

    def __init__(self, document_ref, requested, remaining):
        self.document_ref = document_ref
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Amount {requested} for {document_ref} exceeds remaining "
            f"balance of ${remaining}",
            code="payment_exceeds_balance",
        )
