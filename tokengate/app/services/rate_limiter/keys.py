"""Redis key layout for token buckets."""

from tokengate.app.exceptions import InvalidRuleIdError

from .models import BucketKeys

DEFAULT_KEY_PREFIX = "request_rate_limiter"


def get_keys(rule_id: str, prefix: str = DEFAULT_KEY_PREFIX) -> BucketKeys:
    """Build the token and timestamp keys for a rule.

    The rule id is wrapped in a ``{...}`` hash tag so Redis Cluster places
    both keys in the same slot, which multi-key scripts require.

    Args:
        rule_id: Rate limit rule (or tenant) identifier
        prefix: Key namespace

    Returns:
        BucketKeys for ``<prefix>.{<rule_id>}.tokens`` and
        ``<prefix>.{<rule_id>}.timestamp``

    Raises:
        InvalidRuleIdError: If rule_id is not a non-empty string
    """
    if not isinstance(rule_id, str) or not rule_id.strip():
        raise InvalidRuleIdError(rule_id)
    tagged = f"{prefix}.{{{rule_id}}}"
    return BucketKeys(
        tokens_key=f"{tagged}.tokens",
        timestamp_key=f"{tagged}.timestamp",
    )
