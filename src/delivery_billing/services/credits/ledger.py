"""Per-account usage credits with optimistic concurrency."""

from __future__ import annotations

import logging

from ...config import settings
from ...errors import ConcurrencyExhausted, InsufficientCredits, ProfileNotFound
from ...persistence import profiles

logger = logging.getLogger(__name__)


class CreditLedger:
    """Decrement a credit balance with compare-and-swap.

    A lost race triggers one re-read and one more attempt by default
    (``max_retries``). After that the caller gets :class:`ConcurrencyExhausted`.
    """

    def __init__(self, max_retries: int | None = None) -> None:
        self.max_retries = max_retries if max_retries is not None else settings.credit_cas_retries

    def balance(self, account_id: str) -> int:
        current = profiles.read_credits(account_id)
        if current is None:
            raise ProfileNotFound(account_id)
        return current

    def consume(self, account_id: str, amount: int) -> None:
        if amount <= 0:
            return

        for attempt in range(self.max_retries + 1):
            current = self.balance(account_id)
            if current < amount:
                raise InsufficientCredits(required=amount, available=current)
            if profiles.compare_and_set_credits(account_id, expected=current, new_value=current - amount):
                logger.info(f"Consumed {amount} credits for account {account_id} ({current} -> {current - amount})")
                return
            logger.warning(
                f"Credit balance for account {account_id} changed concurrently "
                f"(attempt {attempt + 1}/{self.max_retries + 1})"
            )

        raise ConcurrencyExhausted(
            f"Unable to consume {amount} credits for account {account_id}: balance kept changing. Retry later."
        )
