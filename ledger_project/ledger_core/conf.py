from decimal import Decimal

from django.conf import settings

# Fallbacks used when settings.LEDGER omits a key
DEFAULTS = {
    "BALANCE_TOLERANCE": "0.001",
    "MATCH_DATE_TOLERANCE_DAYS": 30,
    "MATCH_CONFIDENCE_THRESHOLD": 50,
    "FX_GAIN_ACCOUNT_CODE": "4300",
    "FX_LOSS_ACCOUNT_CODE": "7100",
    "EXCHANGE_RATE_API_URL": "https://v6.exchangerate-api.com/v6",
    "EXCHANGE_RATE_API_KEY": "",
    "EXCHANGE_RATE_TIMEOUT": 10.0,
}


def ledger_setting(name):
    """Return settings.LEDGER[name], falling back to the engine default."""
    overrides = getattr(settings, "LEDGER", {}) or {}
    if name in overrides:
        return overrides[name]
    return DEFAULTS[name]


def balance_tolerance():
    return Decimal(str(ledger_setting("BALANCE_TOLERANCE")))
