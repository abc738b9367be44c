"""
Storefront order service.

Order lifecycle and inventory ledger engine: checkout, one-click buy,
cancellation, return/refund workflow and the append-only transaction ledger.
"""
