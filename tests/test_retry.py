"""
Test suite for conflict retries
"""

import pytest

from classroom_economy.storage import InMemoryStorage
from classroom_economy.retry import retry_on_conflict
from classroom_economy.errors import ConcurrentModificationError


class TestRetryOnConflict:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.sleeps = []

    def flaky(self, failures):
        calls = []

        def operation():
            calls.append(1)
            if len(calls) <= failures:
                raise ConcurrentModificationError("busy")
            return "done"

        return operation, calls

    def test_retries_with_exponential_backoff(self):
        operation, calls = self.flaky(3)

        result = retry_on_conflict(self.storage, operation, max_retries=5, backoff_base=0.1,
                                   sleep=self.sleeps.append)

        assert result == "done"
        assert len(calls) == 4
        assert self.sleeps == pytest.approx([0.1, 0.2, 0.4])

    def test_gives_up(self):
        operation, calls = self.flaky(10)

        with pytest.raises(ConcurrentModificationError):
            retry_on_conflict(self.storage, operation, max_retries=3, backoff_base=0, sleep=self.sleeps.append)
        assert len(calls) == 3

    def test_no_retry_inside_transaction(self):
        operation, calls = self.flaky(1)

        with pytest.raises(ConcurrentModificationError):
            with self.storage.atomic():
                retry_on_conflict(self.storage, operation, sleep=self.sleeps.append)
        assert len(calls) == 1
        assert self.sleeps == []

    def test_other_errors_propagate(self):
        def operation():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            retry_on_conflict(self.storage, operation, sleep=self.sleeps.append)
