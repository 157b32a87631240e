"""JSON normalisation for the identities and amounts we put on the wire."""
import re
from decimal import Decimal, InvalidOperation

from xrpl.core.addresscodec import is_valid_classic_address
from xrpl.models.amounts import IssuedCurrencyAmount

from rippled_remote.errors import LocalError

_CURRENCY_RE = re.compile(r"^([A-Za-z0-9?!@#$%^&*<>(){}\[\]|]{3}|[0-9A-Fa-f]{40})$")


def is_valid_account(account) -> bool:
    return isinstance(account, str) and is_valid_classic_address(account)


def account_json(account) -> str:
    if not is_valid_account(account):
        raise LocalError("invalidAccount", f"Bad account: {account!r}")
    return account


def is_valid_currency(currency) -> bool:
    return isinstance(currency, str) and bool(_CURRENCY_RE.match(currency))


def currency_json(currency) -> str:
    if not is_valid_currency(currency):
        raise LocalError("invalidCurrency", f"Bad currency: {currency!r}")
    return currency.upper() if len(currency) == 40 else currency


def issue_json(issue: dict) -> dict:
    """``{"currency": ..., "issuer": ...}`` with the issuer omitted for XRP."""
    currency = currency_json(issue.get("currency"))
    if currency == "XRP":
        return {"currency": "XRP"}
    return {"currency": currency, "issuer": account_json(issue.get("issuer"))}


def amount_json(amount) -> str | dict:
    """Normalise an amount to its JSON form.

    XRP is a string of drops. Issued amounts are ``{currency, issuer, value}``
    and may also be given as ``"value/CUR/rIssuer"`` or an xrpl-py
    ``IssuedCurrencyAmount``.
    """
    if isinstance(amount, IssuedCurrencyAmount):
        amount = amount.to_dict()
    if isinstance(amount, bool):
        raise LocalError("invalidAmount", f"Bad amount: {amount!r}")
    if isinstance(amount, int):
        if amount < 0:
            raise LocalError("invalidAmount", f"Negative XRP amount: {amount}")
        return str(amount)
    if isinstance(amount, str):
        if "/" in amount:
            value, _, rest = amount.partition("/")
            currency, _, issuer = rest.partition("/")
            return amount_json({"value": value, "currency": currency, "issuer": issuer})
        if not amount.isdigit():
            raise LocalError("invalidAmount", f"Bad XRP amount: {amount!r}")
        return amount
    if isinstance(amount, dict):
        value = amount.get("value")
        try:
            Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise LocalError("invalidAmount", f"Bad amount value: {value!r}") from None
        issue = issue_json(amount)
        if issue["currency"] == "XRP":
            raise LocalError("invalidAmount", "XRP amounts are given in drops")
        return {"currency": issue["currency"], "issuer": issue["issuer"], "value": str(value)}
    raise LocalError("invalidAmount", f"Bad amount: {amount!r}")


def book_key(gets: dict, pays: dict) -> str:
    """``CUR/issuer:CUR/issuer`` key of an order book (``XRP`` has no issuer)."""

    def side(issue):
        if issue["currency"] == "XRP":
            return "XRP"
        return f"{issue['currency']}/{issue['issuer']}"

    return f"{side(gets)}:{side(pays)}"


def amount_issue(amount) -> dict:
    """The ``{currency, issuer}`` half of a JSON amount."""
    if isinstance(amount, dict):
        return {"currency": amount["currency"], "issuer": amount.get("issuer")}
    return {"currency": "XRP"}


def negate_value(amount: dict) -> dict:
    value = -Decimal(str(amount["value"]))
    return {**amount, "value": format(value.normalize() if value else Decimal(0), "f")}
