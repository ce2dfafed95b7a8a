from fillrecon.ledger.ledger import TradeLedger

__all__ = ["TradeLedger"]
