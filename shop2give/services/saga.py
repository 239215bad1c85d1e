"""Compensating-action bookkeeping for multi-system writes.

Checkout writes to Stripe and to the local database in sequence. If a
later step fails, the steps this request already completed are undone in
reverse order. Only steps recorded on this Saga are undone, so a Stripe
customer that existed before the request is never touched.

Undo actions are best-effort: a failing undo is logged and the remaining
undos still run. Nothing is retried.
"""

import logging

logger = logging.getLogger(__name__)


class Saga:
    def __init__(self, name):
        self.name = name
        self._undo_stack = []

    def step(self, description, action, undo=None):
        """Run action(); on success remember undo (if any) for compensate()."""
        result = action()
        if undo is not None:
            self._undo_stack.append((description, lambda: undo(result)))
        return result

    def record(self, description, undo):
        """Register an undo for work done outside step()."""
        self._undo_stack.append((description, undo))

    @property
    def pending_undos(self):
        return [description for description, _ in self._undo_stack]

    def compensate(self):
        """Run recorded undos newest-first. Returns descriptions that failed."""
        failed = []
        while self._undo_stack:
            description, undo = self._undo_stack.pop()
            try:
                undo()
                logger.info(f"[{self.name}] compensated: {description}")
            except Exception as e:
                logger.error(f"[{self.name}] failed to compensate {description}: {e}")
                failed.append(description)
        return failed
