"""
Vault error taxonomy.

Validation, authorization and state errors are raised before any ledger
mutation. AdapterError is what adapters raise for their own failures;
best-effort loops in the allocator turn it (or anything else an adapter
throws) into a failed AdapterCallResult instead of propagating.
"""


class VaultError(Exception):
    """Base class for every error raised by the vault."""


class ValidationError(VaultError):
    """Malformed input: zero address, zero or undersized amount, bad bps."""


class AuthorizationError(VaultError):
    def __init__(self, caller: str, role: str):
        self.caller = caller
        self.role = role
        super().__init__(f"{caller or '<anonymous>'} lacks role '{role}'")


class StateError(VaultError):
    """The request is well-formed but the current state does not allow it."""


class InsufficientSharesError(StateError):
    pass


class InsufficientBalanceError(StateError):
    pass


class InsufficientReservedError(StateError):
    pass


class InsufficientLiquidityError(StateError):
    """Idle funds could not be raised to cover a payout."""


class DuplicateAdapterError(StateError):
    pass


class AdapterNotFoundError(StateError):
    pass


class WeightCapExceededError(StateError):
    pass


class VaultPausedError(StateError):
    pass


class RebalanceCooldownError(StateError):
    pass


class ReentrancyError(StateError):
    pass


class NoProtocolError(StateError):
    pass


class AdapterError(VaultError):
    def __init__(self, adapter: str, message: str):
        self.adapter = adapter
        super().__init__(f"[{adapter}] {message}")
