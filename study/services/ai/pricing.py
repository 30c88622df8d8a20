"""Cost calculation utilities for AI token usage."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from .schemas import TokenKind

ZERO = Decimal('0')
_ONE_MILLION = Decimal(1_000_000)


@dataclass(frozen=True)
class ModelPricing:
    """USD prices per 1 million tokens for each :class:`TokenKind`."""

    input_per_1m: Decimal = ZERO
    output_per_1m: Decimal = ZERO
    embedding_per_1m: Decimal = ZERO

    def price_for(self, kind: Union[TokenKind, str]) -> Decimal:
        kind = TokenKind(kind)
        if kind is TokenKind.INPUT:
            return self.input_per_1m
        if kind is TokenKind.OUTPUT:
            return self.output_per_1m
        return self.embedding_per_1m


FREE = ModelPricing()


def to_decimal(value: Union[Decimal, float, int, str, None]) -> Optional[Decimal]:
    """Return *value* as a ``Decimal`` (floats go through ``str`` to avoid binary noise)."""
    if value is None or value == '':
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def calculate_cost(tokens: Optional[int], price_per_1m: Optional[Decimal]) -> Decimal:
    """Return the USD cost of *tokens* at *price_per_1m*.

    Missing token counts or prices are treated as zero cost.
    """
    if not tokens or price_per_1m is None:
        return ZERO
    return Decimal(tokens) / _ONE_MILLION * price_per_1m


def estimate_tokens(text: str) -> int:
    """Rough token estimate used for admission control: ~4 characters per token."""
    if not text:
        return 0
    return max(1, (len(text) + 3) // 4)
