"""Data models for the distributed rate limiter."""

from dataclasses import dataclass

# Reported in place of a real token count when the store could not be consulted
UNKNOWN_TOKENS = -1


@dataclass(frozen=True)
class RateLimiterResponse:
    """Admission decision for a single request.

    Attributes:
        allowed: Whether the request may proceed
        tokens_remaining: Whole tokens left in the bucket after this request,
            or UNKNOWN_TOKENS when the limiter failed open
    """
    allowed: bool
    tokens_remaining: int

    @property
    def is_fallback(self) -> bool:
        """True when this decision was produced without consulting Redis."""
        return self.tokens_remaining == UNKNOWN_TOKENS

    @classmethod
    def fail_open(cls) -> "RateLimiterResponse":
        return cls(allowed=True, tokens_remaining=UNKNOWN_TOKENS)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "allowed": self.allowed,
            "tokens_remaining": self.tokens_remaining,
        }


@dataclass(frozen=True)
class BucketKeys:
    """Redis keys holding the state of one token bucket."""
    tokens_key: str
    timestamp_key: str

    def as_list(self) -> list[str]:
        """Keys in the order the token bucket script expects them."""
        return [self.tokens_key, self.timestamp_key]

    def __iter__(self):
        return iter(self.as_list())
