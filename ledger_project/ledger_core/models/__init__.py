from .account import (AC_TYPES, ACCOUNT_ROLES, ASSET_TYPES,
                      CASH_FLOW_CATEGORIES, DEBIT_NORMAL_TYPES, EQUITY_TYPES,
                      INCOME_STATEMENT_TYPES, LIABILITY_TYPES, Account,
                      AccountRoleMapping, is_debit_normal, signed_effect)
from .auditlog import AuditLog
from .banking import BankTransactionMatch, ImportedTransaction
from .contact import Contact
from .currency import Currency, ExchangeRate
from .entitymembership import Company, EntityMembership, User
from .fx import FxRealization, FxRevaluation
from .ledger import LedgerEntry, PaymentApplication
from .product import Product, SalesTax
from .reconciliation import Reconciliation, ReconciliationItem
from .transaction import (CREDIT_SOURCE_TYPES, DOCUMENT_TYPES,
                          TRANSACTION_TYPE_RULES, TRANSACTION_TYPES,
                          UNPOSTED_STATUSES, LineItem, Transaction)
