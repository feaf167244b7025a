from .account import Account, AccountType, NormalBalance
from .auditlog import AuditAction, AuditLog
from .banking import (BankStatement, BankTransaction, MatchMethod,
                      MatchStatus, StatementStatus, TxType)
from .company import Company
from .invoice import Invoice, InvoiceStatus, Payment, PaymentStatus
from .journal import JournalEntry, JournalLine, JournalStatus, JournalType
from .period import Period
