"""
Yield Vault — pooled capital, proportional shares, pluggable yield adapters.

Depositors receive vault shares against the pool's total assets (idle funds
plus everything reported by the registered adapters). Idle capital is pushed
into adapters by weight, pulled back proportionally on withdrawal, and part
of a user's balance can be reserved as collateral for device rentals.
"""
__version__ = "1.0.0"
