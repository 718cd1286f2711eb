"""
Account Classification Service

Maps raw provider metadata (type codes, usage flags, display names) onto the
engine's (type, subtype, usage) triple. Every function here is total: unknown,
empty or missing input always yields a defined result.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Union


class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    INVESTMENT = "investment"
    LOAN = "loan"


@dataclass(frozen=True)
class PassthroughType:
    """A provider type code outside the known set, kept verbatim."""
    raw: str

    @property
    def value(self) -> str:
        return self.raw


ClassifiedType = Union[AccountType, PassthroughType]


class Subtype(str, Enum):
    CRYPTO = "crypto"
    STOCKS = "stocks"
    GOLD = "gold"
    OTHER = "other"


class Usage(str, Enum):
    PERSONAL = "personal"
    PROFESSIONAL = "professional"


# Provider type codes
CHECKING_CODES: FrozenSet[str] = frozenset({"checking", "card"})
SAVINGS_CODES: FrozenSet[str] = frozenset({"savings", "deposit", "livreta", "livretb", "ldds", "cel", "pel"})
LOAN_CODES: FrozenSet[str] = frozenset({"loan"})
INVESTMENT_CODES: FrozenSet[str] = frozenset({
    "market", "pea", "pee", "per", "perco", "perp", "lifeinsurance", "madelin",
    "capitalisation", "crowdlending", "realEstate", "article83",
})

CRYPTO_PROVIDERS: FrozenSet[str] = frozenset({"blockchain", "coinbase", "binance"})

# Name keywords per language, matched as lowercase substrings.
# Order matters: savings is tested before investment, investment before loan.
TYPE_KEYWORDS: Dict[str, Dict[AccountType, List[str]]] = {
    "fr": {
        AccountType.SAVINGS: ["livret", "épargne", "epargne", "ldd"],
        AccountType.INVESTMENT: ["pea", "per ", "assurance"],
        AccountType.LOAN: ["prêt", "pret", "crédit", "credit", "immo"],
    },
    "en": {
        AccountType.SAVINGS: ["savings"],
        AccountType.INVESTMENT: ["brokerage", "investment"],
        AccountType.LOAN: ["loan", "mortgage"],
    },
}

SUBTYPE_KEYWORDS: Dict[Subtype, List[str]] = {
    Subtype.STOCKS: ["pea", "action", "bourse", "trading", "stock"],
    Subtype.GOLD: ["or ", "gold", "métaux", "metaux"],
}

_TYPE_ORDER = (AccountType.SAVINGS, AccountType.INVESTMENT, AccountType.LOAN)


def _contains_any(text: str, keywords: List[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def classify_type(provider_type: Optional[str], account_name: Optional[str]) -> ClassifiedType:
    """
    Classify an account from its provider type code, falling back to its name.
    Unknown provider codes are passed through rather than discarded.
    """
    if provider_type:
        if provider_type in CHECKING_CODES:
            return AccountType.CHECKING
        if provider_type in SAVINGS_CODES:
            return AccountType.SAVINGS
        if provider_type in LOAN_CODES:
            return AccountType.LOAN
        if provider_type in INVESTMENT_CODES:
            return AccountType.INVESTMENT
        return PassthroughType(provider_type)

    lower = (account_name or "").lower()
    for account_type in _TYPE_ORDER:
        for keywords in TYPE_KEYWORDS.values():
            if _contains_any(lower, keywords[account_type]):
                return account_type
    return AccountType.CHECKING


def classify_subtype(
    account_type: Union[ClassifiedType, str, None],
    provider: Optional[str],
    account_name: Optional[str]
) -> Optional[Subtype]:
    """Subtype only applies to investment accounts; None for everything else."""
    type_value = getattr(account_type, "value", account_type)
    if type_value != AccountType.INVESTMENT.value:
        return None

    if provider in CRYPTO_PROVIDERS:
        return Subtype.CRYPTO

    lower = (account_name or "").lower()
    if _contains_any(lower, SUBTYPE_KEYWORDS[Subtype.STOCKS]):
        return Subtype.STOCKS
    if _contains_any(lower, SUBTYPE_KEYWORDS[Subtype.GOLD]):
        return Subtype.GOLD
    return Subtype.OTHER


def classify_usage(provider_usage: Optional[str], company_id: Optional[int]) -> Usage:
    """An explicit provider usage wins; otherwise a company link means professional."""
    if provider_usage == "professional":
        return Usage.PROFESSIONAL
    if provider_usage in ("private", "personal"):
        return Usage.PERSONAL
    return Usage.PROFESSIONAL if company_id is not None else Usage.PERSONAL
