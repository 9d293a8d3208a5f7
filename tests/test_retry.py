from unittest.mock import Mock, patch

import pytest

from catalog.exceptions import DeadlineExceeded
from catalog.retry import Deadline, RetryPolicy, call_with_retry, exponential_backoff


class TestBackoff:
    def test_exponential(self):
        assert [exponential_backoff(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]


class TestCallWithRetry:
    def test_returns_first_success(self):
        func = Mock(return_value='ok')
        with patch('catalog.retry.time.sleep') as mock_sleep:
            assert call_with_retry(func, RetryPolicy()) == 'ok'
        func.assert_called_once()
        mock_sleep.assert_not_called()

    def test_on_failure_called_with_attempt_number(self):
        func = Mock(side_effect=[ValueError('a'), ValueError('b'), 'ok'])
        on_failure = Mock()
        with patch('catalog.retry.time.sleep'):
            call_with_retry(func, RetryPolicy(), on_failure=on_failure)
        assert [c.args[1] for c in on_failure.call_args_list] == [1, 2]

    def test_last_error_reraised(self):
        func = Mock(side_effect=[ValueError('a'), ValueError('b')])
        with patch('catalog.retry.time.sleep'):
            with pytest.raises(ValueError, match='b'):
                call_with_retry(func, RetryPolicy(max_attempts=2))

    def test_non_retryable_raised_immediately(self):
        func = Mock(side_effect=[KeyError('bad'), 'ok'])
        policy = RetryPolicy(is_retryable=lambda exc: not isinstance(exc, KeyError))
        with patch('catalog.retry.time.sleep') as mock_sleep:
            with pytest.raises(KeyError):
                call_with_retry(func, policy)
        func.assert_called_once()
        mock_sleep.assert_not_called()

    def test_custom_backoff(self):
        func = Mock(side_effect=[ValueError(), ValueError(), 'ok'])
        with patch('catalog.retry.time.sleep') as mock_sleep:
            call_with_retry(func, RetryPolicy(backoff=lambda attempt: 0.5 * attempt))
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]

    def test_sleep_clipped_to_deadline(self):
        func = Mock(side_effect=[ValueError(), 'ok'])
        deadline = Mock(spec=Deadline)
        deadline.remaining.return_value = 0.25
        with patch('catalog.retry.time.sleep') as mock_sleep:
            call_with_retry(func, RetryPolicy(), deadline=deadline)
        mock_sleep.assert_called_once_with(0.25)

    def test_expired_deadline_raises(self):
        func = Mock(return_value='ok')
        with pytest.raises(DeadlineExceeded):
            call_with_retry(func, RetryPolicy(), deadline=Deadline(0))
        func.assert_not_called()


class TestDeadline:
    def test_unbounded_deadline_never_expires(self):
        deadline = Deadline(None)
        assert deadline.remaining() is None
        assert not deadline.expired()
        deadline.check()

    def test_remaining_counts_down(self):
        deadline = Deadline(60)
        assert 0 < deadline.remaining() <= 60
        assert not deadline.expired()
