"""Pure salon business rules.

Each module is a self-contained rule-set with no I/O: booking rules,
order and payment states, the stock ledger, loyalty tiers and vouchers.
Callers pass configuration and ``now`` explicitly.
"""
