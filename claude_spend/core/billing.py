"""
Billing context resolution.

Decides once per run which pricing regime applies.

Resolution order:
1. Explicit override - caller-supplied billing value
2. External API key - pay-per-token wins over any subscription marker
3. Credential record - subscription markers map to a plan tier
4. Default - pay-per-token
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class BillingContext(Enum):
    """Pricing regime for a run."""
    API = "api"          # Pay-per-token
    PRO = "pro"
    MAX_5X = "max_5x"
    MAX_20X = "max_20x"


SUBSCRIPTION_MONTHLY_FEE = {
    BillingContext.API: 0,
    BillingContext.PRO: 20,
    BillingContext.MAX_5X: 100,
    BillingContext.MAX_20X: 200,
}

PLAN_NAMES = {
    BillingContext.API: "API",
    BillingContext.PRO: "Pro",
    BillingContext.MAX_5X: "Max 5x",
    BillingContext.MAX_20X: "Max 20x",
}


def is_subscription(context: BillingContext) -> bool:
    """True for any flat-fee plan (costs are then equivalent API figures)."""
    return context != BillingContext.API


def get_subscription_monthly_fee(context: BillingContext) -> int:
    """Flat monthly fee in dollars (0 for pay-per-token)."""
    return SUBSCRIPTION_MONTHLY_FEE[context]


def parse_billing_context(value: str) -> BillingContext:
    """Parse a billing value such as ``"max_5x"``.

    Raises:
        ValueError: If the value is not a known billing context
    """
    try:
        return BillingContext(value.strip().lower())
    except (AttributeError, ValueError):
        valid = [context.value for context in BillingContext]
        raise ValueError(f"billing must be one of: {valid}")


def load_credential_record(path: Union[str, Path]) -> Optional[Dict[str, Any]]:
    """Read the locally stored credential record.

    A missing, unreadable or malformed file yields None.
    """
    cred_path = Path(path)
    try:
        with open(cred_path, "r", encoding="utf-8") as f:
            record = json.load(f)
    except FileNotFoundError:
        logger.debug("No credential record at %s", cred_path)
        return None
    except (OSError, ValueError) as e:
        logger.debug("Ignoring unreadable credential record %s: %s", cred_path, e)
        return None

    if not isinstance(record, dict):
        logger.debug("Ignoring credential record %s: not an object", cred_path)
        return None
    return record


def _context_from_credentials(record: Optional[Dict[str, Any]]) -> Optional[BillingContext]:
    """Map subscription markers in a credential record to a plan tier."""
    if not isinstance(record, dict):
        return None
    oauth = record.get("claudeAiOauth")
    if not isinstance(oauth, dict):
        return None

    subscription = oauth.get("subscriptionType")
    tier = oauth.get("rateLimitTier")
    if not isinstance(tier, str):
        tier = ""

    # Tier markers take precedence over the subscription type
    if "max_20x" in tier:
        return BillingContext.MAX_20X
    if "max_5x" in tier:
        return BillingContext.MAX_5X
    if subscription == "max":
        return BillingContext.MAX_20X
    if subscription == "pro" or "pro" in tier:
        return BillingContext.PRO
    return None


def resolve_billing_context(
    override: Optional[str] = None,
    external_credential_present: bool = False,
    credential_record: Optional[Dict[str, Any]] = None,
) -> BillingContext:
    """Resolve the billing context for a run.

    Args:
        override: Explicit billing value (e.g. from config or environment)
        external_credential_present: Whether a pay-per-token API key is set
        credential_record: Parsed credential record, or None if absent

    Returns:
        The BillingContext for the whole run
    """
    if override:
        try:
            context = parse_billing_context(override)
            logger.debug("Billing context overridden to %s", context.value)
            return context
        except ValueError:
            logger.warning("Ignoring invalid billing override %r", override)

    if external_credential_present:
        return BillingContext.API

    context = _context_from_credentials(credential_record)
    if context is not None:
        return context

    return BillingContext.API
