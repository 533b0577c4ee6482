"""
Sweep Policy

Pure decision logic: is a balance worth sweeping, and how much can be sent.
Integer smallest-unit arithmetic only.
"""

from dataclasses import dataclass

REASON_OK = 'ok'
REASON_BELOW_THRESHOLD = 'below_threshold'
REASON_INSUFFICIENT_AFTER_FEE = 'insufficient_after_fee'


@dataclass(frozen=True)
class SweepDecision:
    """Whether to transfer, and the amount if so"""
    transfer: bool
    amount: int
    reason: str = REASON_OK


def _require_int(name: str, value) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int in smallest units, got {type(value).__name__}")
    return value


class SweepPolicy:
    """
    Threshold and fee-reserve rules

    Thresholds keep dust from being swept when fees would eat it. Tokens go in
    full since their gas is paid from the native balance.
    """

    @staticmethod
    def estimate_native_fee(gas_price: int, gas_limit: int) -> int:
        """Fee reserve for a legacy transaction: gas_limit * gas_price"""
        return _require_int('gas_limit', gas_limit) * _require_int('gas_price', gas_price)

    def evaluate_native(self, balance: int, min_native_threshold: int, estimated_fee: int) -> SweepDecision:
        balance = _require_int('balance', balance)
        min_native_threshold = _require_int('min_native_threshold', min_native_threshold)
        estimated_fee = _require_int('estimated_fee', estimated_fee)

        if balance < min_native_threshold:
            return SweepDecision(transfer=False, amount=0, reason=REASON_BELOW_THRESHOLD)

        amount = balance - estimated_fee
        if amount <= 0:
            return SweepDecision(transfer=False, amount=amount, reason=REASON_INSUFFICIENT_AFTER_FEE)

        return SweepDecision(transfer=True, amount=amount)

    def evaluate_token(self, balance: int, min_token_threshold: int) -> SweepDecision:
        balance = _require_int('balance', balance)
        min_token_threshold = _require_int('min_token_threshold', min_token_threshold)

        # a zero threshold must still never produce a zero-amount transfer
        if balance < min_token_threshold or balance <= 0:
            return SweepDecision(transfer=False, amount=0, reason=REASON_BELOW_THRESHOLD)

        return SweepDecision(transfer=True, amount=balance)
