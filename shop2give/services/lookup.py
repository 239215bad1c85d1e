"""First-match lookup across ordered sources.

Used to find a campaign's product in Stripe as
``search(key) orElse scan_and_filter(predicate)``. Stripe's Search API is
backed by an index that lags recent writes by up to a minute, so a product
created moments ago may not be found by search yet. The scan phase lists
active products and filters client-side to cover that window. This is a
consistency workaround, not an optimization: the search phase is tried
first only because it returns the authoritative hit when the index is
current.
"""

import logging

logger = logging.getLogger(__name__)


class FirstMatchLookup:
    """Try each phase in order; the first candidate accepted wins.

    A phase is a zero-argument callable returning an iterable of
    candidates, plus an optional predicate overriding the lookup default.
    Sources are evaluated lazily, so later phases cost nothing when an
    earlier one matched.
    """

    def __init__(self, predicate, description=""):
        self.predicate = predicate
        self.description = description
        self.phases = []

    def phase(self, name, source, predicate=None):
        self.phases.append((name, source, predicate or self.predicate))
        return self

    def find(self):
        """Return (match, phase_name) or (None, None)."""
        for name, source, predicate in self.phases:
            for candidate in source():
                if predicate(candidate):
                    logger.debug(f"Lookup {self.description!r} matched in phase {name}")
                    return candidate, name
        return None, None
