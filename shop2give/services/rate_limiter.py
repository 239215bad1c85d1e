"""Database-backed rate limiter.

Two interchangeable strategies keyed by (endpoint name, caller identifier):

- SlidingWindowLimiter: one api_rate_limits row per request; a caller is
  limited once max_requests rows fall inside the trailing window. Rows
  older than the window are deleted whenever a request is recorded.
- FixedWindowLimiter: one rate_limits row per key holding a counter that
  is reset when its window expires.

Both fail open: if the database errors, the request is allowed and the
error is logged. Rate limiting is not on the critical path, availability
wins over strict enforcement.

Flask-Limiter (see extensions.py) still handles coarse per-IP limits on
unauthenticated-ish endpoints; this module covers the per-user limits that
must be shared across instances through the database.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError

from shop2give.cors import with_cors
from shop2give.errors import RateLimitError
from shop2give.extensions import db
from shop2give.models.rate_limit import RateLimitCounter, RateLimitEvent

logger = logging.getLogger(__name__)


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class RateLimitConfig:
    name: str
    identifier: str
    max_requests: int = 60
    window_seconds: int = 60

    @property
    def key(self):
        return f"{self.name}:{self.identifier}"


@dataclass(frozen=True)
class RateLimitStatus:
    allowed: bool
    remaining: int
    reset_at: datetime


class RateLimiter:
    """Base class: subclasses implement check_limit()."""

    def __init__(self, config, clock=utcnow):
        self.config = config
        self._clock = clock

    @property
    def window(self):
        return timedelta(seconds=self.config.window_seconds)

    def check_limit(self):
        raise NotImplementedError

    def _fail_open(self, now, error):
        db.session.rollback()
        logger.error(f"Rate limiter error for {self.config.key}, allowing request: {error}")
        return RateLimitStatus(
            allowed=True,
            remaining=self.config.max_requests,
            reset_at=now + self.window,
        )

    def enforce(self):
        """Raise RateLimitError if the caller is over the limit."""
        status = self.check_limit()
        if status.allowed:
            return status

        retry_after = max(1, math.ceil((status.reset_at - self._clock()).total_seconds()))
        logger.warning(f"Rate limit exceeded for {self.config.key}")
        raise RateLimitError(
            retry_after=retry_after,
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(self.config.max_requests),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(int(status.reset_at.timestamp())),
            },
        )

    def limit_request(self):
        """Return a ready-to-send 429 response if limited, else None."""
        try:
            self.enforce()
        except RateLimitError as e:
            return rate_limit_response(e)
        return None


def rate_limit_response(error):
    """429 JSON body + Retry-After / X-RateLimit-* headers for a RateLimitError."""
    response = jsonify(
        success=False,
        error=error.message,
        retryAfter=error.retry_after,
    )
    response.status_code = error.status_code
    for key, value in error.headers.items():
        response.headers[key] = value
    return with_cors(response)


class SlidingWindowLimiter(RateLimiter):
    """Event-log strategy: count requests in the trailing window."""

    def _window_timestamps(self, now):
        rows = (
            db.session.query(RateLimitEvent.timestamp)
            .filter(
                RateLimitEvent.name == self.config.name,
                RateLimitEvent.identifier == self.config.identifier,
                RateLimitEvent.timestamp > now - self.window,
            )
            .order_by(RateLimitEvent.timestamp.asc())
            .all()
        )
        return [as_utc(row[0]) for row in rows]

    def is_rate_limited(self):
        """True if the caller has used up the window. Fails open."""
        now = self._clock()
        try:
            return len(self._window_timestamps(now)) >= self.config.max_requests
        except SQLAlchemyError as e:
            self._fail_open(now, e)
            return False

    def record_request(self, at=None):
        """Record one request and drop this key's rows that left the window.

        Errors are logged, never raised.
        """
        at = at or self._clock()
        try:
            (
                RateLimitEvent.query
                .filter(
                    RateLimitEvent.name == self.config.name,
                    RateLimitEvent.identifier == self.config.identifier,
                    RateLimitEvent.timestamp <= at - self.window,
                )
                .delete(synchronize_session=False)
            )
            db.session.add(RateLimitEvent(
                name=self.config.name,
                identifier=self.config.identifier,
                timestamp=at,
            ))
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Error recording rate limit request for {self.config.key}: {e}")

    def check_limit(self):
        now = self._clock()
        try:
            timestamps = self._window_timestamps(now)
        except SQLAlchemyError as e:
            return self._fail_open(now, e)

        if len(timestamps) >= self.config.max_requests:
            # The oldest request in the window is the next to drop out.
            return RateLimitStatus(
                allowed=False,
                remaining=0,
                reset_at=timestamps[0] + self.window,
            )

        self.record_request(now)
        reset_at = (timestamps[0] if timestamps else now) + self.window
        return RateLimitStatus(
            allowed=True,
            remaining=self.config.max_requests - len(timestamps) - 1,
            reset_at=reset_at,
        )


class FixedWindowLimiter(RateLimiter):
    """Counter strategy: increment, or reset once the window has expired."""

    def check_limit(self):
        now = self._clock()
        try:
            counter = RateLimitCounter.query.filter_by(key=self.config.key).first()

            if counter is None or as_utc(counter.reset_at) <= now:
                reset_at = now + self.window
                if counter is None:
                    counter = RateLimitCounter(key=self.config.key, count=1, reset_at=reset_at)
                    db.session.add(counter)
                else:
                    counter.count = 1
                    counter.reset_at = reset_at
                db.session.commit()
                return RateLimitStatus(
                    allowed=True,
                    remaining=self.config.max_requests - 1,
                    reset_at=reset_at,
                )

            reset_at = as_utc(counter.reset_at)
            if counter.count >= self.config.max_requests:
                return RateLimitStatus(allowed=False, remaining=0, reset_at=reset_at)

            counter.count += 1
            db.session.commit()
            return RateLimitStatus(
                allowed=True,
                remaining=self.config.max_requests - counter.count,
                reset_at=reset_at,
            )
        except SQLAlchemyError as e:
            return self._fail_open(now, e)


STRATEGIES = {
    "sliding": SlidingWindowLimiter,
    "fixed": FixedWindowLimiter,
}


def create_rate_limiter(name, identifier, max_requests=60, window_seconds=60,
                        strategy="sliding", clock=utcnow):
    """Build a limiter for one (endpoint, caller) pair."""
    config = RateLimitConfig(
        name=name,
        identifier=identifier,
        max_requests=max_requests,
        window_seconds=window_seconds,
    )
    return STRATEGIES[strategy](config, clock=clock)
