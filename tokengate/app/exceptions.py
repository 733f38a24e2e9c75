"""Custom exceptions for the rate limiter."""


class TokenGateException(Exception):
    """Base class for rate limiter exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class RateLimiterNotInitializedError(TokenGateException):
    """Raised when the limiter is used before it was bound to Redis.

    This is a wiring bug, so it is never converted into a fail-open decision.
    """
    status_code = 500

    def __init__(self, detail: str = "RedisRateLimiter is not initialized"):
        super().__init__(detail)


class InvalidRuleIdError(TokenGateException, ValueError):
    """Raised for an empty or non-string rule identifier.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400

    def __init__(self, rule_id: object = None, detail: str | None = None):
        self.rule_id = rule_id
        super().__init__(detail or f"Invalid rate limit rule id: {rule_id!r}")


class InvalidRateLimitError(TokenGateException, ValueError):
    """Raised when replenish rate or burst capacity is not a positive number.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400

    def __init__(self, name: str, value: object):
        self.name = name
        self.value = value
        super().__init__(f"{name} must be a positive number, got {value!r}")


class BucketEvaluationError(TokenGateException):
    """Raised when the token bucket script returns an unexpected reply.

    Treated as an infrastructure failure: the limiter fails open.
    """
    status_code = 503

    def __init__(self, result: object = None, detail: str | None = None):
        self.result = result
        super().__init__(detail or f"Unexpected token bucket script result: {result!r}")


class RateLimitExceededError(TokenGateException):
    """Raised by callers that prefer an exception over checking ``allowed``.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, rule_id: str, tokens_remaining: int = 0):
        self.rule_id = rule_id
        self.tokens_remaining = tokens_remaining
        super().__init__(f"Rate limit exceeded for rule {rule_id}")

    def to_response(self) -> dict:
        return {
            "error": "rate_limit_exceeded",
            "message": "Rate limit exceeded. Please try again later.",
            "rule_id": self.rule_id,
            "tokens_remaining": self.tokens_remaining,
        }
