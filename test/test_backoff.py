"""Tests for upload retry backoff."""

import pytest

from bizadvisor.sync.backoff import backoff_delay, retry_delays


class TestBackoff:
    @pytest.mark.parametrize(("retry", "expected"), [(1, 1.0), (2, 2.0), (3, 4.0), (5, 16.0)])
    def test_doubles_per_retry(self, retry: int, expected: float) -> None:
        assert backoff_delay(retry, 1.0) == expected

    def test_scales_with_base(self) -> None:
        assert backoff_delay(3, 0.5) == 2.0

    def test_retry_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            backoff_delay(0, 1.0)

    def test_delays_for_attempt_budget(self) -> None:
        assert retry_delays(3, 1.0) == [1.0, 2.0]
        assert retry_delays(1, 1.0) == []
