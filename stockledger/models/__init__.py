from stockledger.models.audit_log import AuditLog
from stockledger.models.item import StockItem
from stockledger.models.location import StockLocation
from stockledger.models.ledger import Balance, LedgerEntry
from stockledger.models.baseline import BaselineSeedRun
