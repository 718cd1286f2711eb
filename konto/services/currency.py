"""
Currency Normalization Service

Converts native-currency amounts into a user's display currency using the
exchange rate table. A missing rate makes an amount "unconvertible": it is
left out of totals and reported, never counted as zero.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from konto.db.core import ExchangeRateDB
from konto.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CURRENCY = "EUR"


@dataclass
class UnconvertibleAmount:
    amount: Decimal
    currency: str
    reference: Optional[str] = None


@dataclass
class ConvertedTotal:
    total: Decimal = Decimal("0")
    unconvertible: List[UnconvertibleAmount] = field(default_factory=list)


class CurrencyNormalizer:
    """
    Rates are keyed by (base, quote): 1 base = rate quote.
    A pair is usable in both directions; the inverse is derived on lookup.
    """

    def __init__(
        self,
        rates: Optional[Dict[Tuple[str, str], Decimal]] = None,
        default_currency: str = DEFAULT_CURRENCY
    ):
        self.default_currency = default_currency.upper()
        self._rates: Dict[Tuple[str, str], Decimal] = {}
        for (base, quote), rate in (rates or {}).items():
            self.set_rate(base, quote, rate)

    @classmethod
    def from_db(cls, db: Session, default_currency: str = DEFAULT_CURRENCY) -> "CurrencyNormalizer":
        rows = db.query(ExchangeRateDB).all()
        return cls(
            rates={(row.base_currency, row.quote_currency): row.rate for row in rows},
            default_currency=default_currency
        )

    def set_rate(self, base: str, quote: str, rate) -> None:
        rate = Decimal(str(rate))
        if rate <= 0:
            raise ValueError(f"Exchange rate must be positive, got {rate} for {base}/{quote}")
        self._rates[(base.upper(), quote.upper())] = rate

    def _code(self, currency: Optional[str]) -> str:
        return (currency or self.default_currency).upper()

    def rate(self, source_currency: Optional[str], display_currency: Optional[str]) -> Optional[Decimal]:
        source = self._code(source_currency)
        target = self._code(display_currency)
        if source == target:
            return Decimal("1")

        direct = self._rates.get((source, target))
        if direct is not None:
            return direct

        inverse = self._rates.get((target, source))
        if inverse is not None:
            return Decimal("1") / inverse
        return None

    def to_display(self, amount, source_currency: Optional[str], display_currency: Optional[str]) -> Optional[Decimal]:
        """
        Convert an amount to the display currency.
        Returns None when the amount cannot be converted.
        """
        amount = Decimal(str(amount))
        if self._code(source_currency) == self._code(display_currency):
            return amount

        rate = self.rate(source_currency, display_currency)
        if rate is None:
            return None
        return amount * rate

    def sum_to_display(
        self,
        items: Iterable[Tuple[Decimal, Optional[str], Optional[str]]],
        display_currency: Optional[str]
    ) -> ConvertedTotal:
        """Sum (amount, currency, reference) triples, setting aside unconvertible ones."""
        result = ConvertedTotal()
        for amount, currency, reference in items:
            converted = self.to_display(amount, currency, display_currency)
            if converted is None:
                logger.warning(
                    f"Excluding {amount} {self._code(currency)} ({reference}): "
                    f"no rate to {self._code(display_currency)}"
                )
                result.unconvertible.append(
                    UnconvertibleAmount(amount=Decimal(str(amount)), currency=self._code(currency), reference=reference)
                )
                continue
            result.total += converted
        return result
