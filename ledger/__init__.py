"""Fee ledger engine: fee records, discounts, FIFO payment allocation,
carry-forward of unpaid dues, the payment-block rule and the audit trail.

Submodules are imported directly (``from ledger import allocation``); this
package does not pull in the models on import.
"""
