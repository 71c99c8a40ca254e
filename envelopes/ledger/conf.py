from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

OVERDRAFT_ALLOW = "allow"
OVERDRAFT_WARN = "warn"
OVERDRAFT_REJECT = "reject"
OVERDRAFT_POLICIES = (OVERDRAFT_ALLOW, OVERDRAFT_WARN, OVERDRAFT_REJECT)

DEFAULTS = {
    "OVERDRAFT_POLICY": OVERDRAFT_ALLOW,
    "ALLOW_FUTURE_DATES": False,
    "MAX_DESCRIPTION_LENGTH": 500,
    "RESTORE_REQUIRES_DELETING_ACTOR": True,
    "LOCK_RETRY_ATTEMPTS": 3,
    "LOCK_RETRY_BACKOFF": 0.05,
}


def ledger_settings():
    """Return the ENVELOPE_LEDGER settings merged over DEFAULTS."""
    configured = getattr(settings, "ENVELOPE_LEDGER", None) or {}
    merged = {**DEFAULTS, **configured}
    if merged["OVERDRAFT_POLICY"] not in OVERDRAFT_POLICIES:
        raise ImproperlyConfigured(
            f"ENVELOPE_LEDGER['OVERDRAFT_POLICY'] must be one of {OVERDRAFT_POLICIES}, "
            f"got {merged['OVERDRAFT_POLICY']!r}"
        )
    return merged
