"""
Tests for the upstream client: error translation, retry policy, detail
fan-out and pagination. All HTTP goes through the scripted FakeSession.
"""
import pytest
import requests

from jobfeed.errors import (
    NetworkError,
    RetryExhaustedError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
    is_retryable,
)
from jobfeed.upstream import UpstreamClient

from conftest import BASE_URL, NOT_JSON, FakeResponse, FakeSession, SleepRecorder, connection_error, ok, status


class TestErrorTaxonomy:
    @pytest.mark.parametrize("error, expected", [
        (NetworkError("reset"), True),
        (UpstreamTimeoutError("slow"), True),
        (UpstreamError(500, "boom"), True),
        (UpstreamError(503), True),
        (UpstreamError(429, "slow down"), True),
        (UpstreamError(404, "missing"), False),
        (UpstreamError(400), False),
        (ValidationError("bad body"), False),
        (ValueError("not ours"), False),
    ])
    def test_is_retryable(self, error, expected):
        assert is_retryable(error) is expected

    def test_retry_exhausted_message(self):
        error = RetryExhaustedError(UpstreamError(503, "Service Unavailable"), 4)
        assert error.attempts == 4
        assert str(error) == "API request failed after 4 attempts: Upstream error (503): Service Unavailable"


class TestSingleRequests:
    def test_fetch_listings(self, client, session):
        session.add("listings", ok([{"id": "1"}, {"id": "2"}]))

        assert client.fetch_listings(page=2, limit=2) == [{"id": "1"}, {"id": "2"}]
        assert session.calls == [{"path": "listings", "params": {"page": 2, "limit": 2}, "timeout": 10.0}]

    def test_fetch_detail(self, client, session):
        session.add("listings/42", ok({"description": "hello"}))
        assert client.fetch_detail("42") == {"description": "hello"}

    def test_fetch_employer_detail(self, client, session):
        session.add("employers/7", ok({"name": "Acme"}))
        assert client.fetch_employer_detail("7") == {"name": "Acme"}

    def test_empty_id_is_rejected_before_any_request(self, client, session):
        with pytest.raises(ValueError):
            client.fetch_detail("")
        with pytest.raises(ValueError):
            client.fetch_employer_detail("")
        assert session.calls == []

    def test_non_json_body_is_validation_error(self, client, session, sleeps):
        session.add("listings", FakeResponse(200, NOT_JSON))
        with pytest.raises(ValidationError):
            client.fetch_listings()
        assert session.calls_to("listings") == 1
        assert sleeps.delays == []

    def test_wrong_data_shape_is_validation_error(self, client, session):
        session.add("listings", ok({"id": "1"}))
        with pytest.raises(ValidationError):
            client.fetch_listings()

    def test_error_envelope_in_200_response(self, client, session):
        session.add("listings/1", FakeResponse(200, {"code": 404, "message": "Listing not found"}))
        with pytest.raises(UpstreamError) as exc_info:
            client.fetch_detail("1")
        assert exc_info.value.code == 404
        assert exc_info.value.message == "Listing not found"

    def test_base_url_trailing_slash(self, session, sleeps):
        client = UpstreamClient(BASE_URL + "/", session=session, sleep=sleeps)
        session.add("listings", ok([]))
        assert client.fetch_listings() == []


class TestRetryPolicy:
    def test_503s_then_success_backs_off_exponentially(self, client, session, sleeps):
        session.add("listings/42", status(503), status(503), ok({"id": "42"}))

        assert client.fetch_detail("42") == {"id": "42"}
        assert session.calls_to("listings/42") == 3
        assert sleeps.delays == pytest.approx([1.0, 2.0])

    def test_success_on_last_allowed_attempt(self, client, session, sleeps):
        session.add("listings", status(500), status(502), status(503), ok([]))

        assert client.fetch_listings() == []
        assert sleeps.delays == pytest.approx([1.0, 2.0, 4.0])

    def test_404_is_not_retried(self, client, session, sleeps):
        session.add("listings/404", status(404))

        with pytest.raises(UpstreamError) as exc_info:
            client.fetch_detail("404")
        assert exc_info.value.code == 404
        assert session.calls_to("listings/404") == 1
        assert sleeps.delays == []

    def test_429_is_retried(self, client, session):
        session.add("listings", status(429), ok([]))
        assert client.fetch_listings() == []
        assert session.calls_to("listings") == 2

    def test_exhaustion_raises_retry_exhausted(self, client, session, sleeps):
        session.add("listings", status(503))

        with pytest.raises(RetryExhaustedError) as exc_info:
            client.fetch_listings()

        error = exc_info.value
        assert error.attempts == 4
        assert isinstance(error.last_error, UpstreamError)
        assert error.last_error.code == 503
        assert session.calls_to("listings") == 4
        assert sleeps.delays == pytest.approx([1.0, 2.0, 4.0])

    def test_timeout_is_retried(self, client, session):
        session.add("listings", requests.Timeout("read timed out"), ok([{"id": "1"}]))
        assert client.fetch_listings() == [{"id": "1"}]
        assert session.calls_to("listings") == 2

    def test_connection_errors_exhaust_as_network_error(self, client, session):
        session.add("listings", connection_error())

        with pytest.raises(RetryExhaustedError) as exc_info:
            client.fetch_listings()
        assert isinstance(exc_info.value.last_error, NetworkError)
        assert not isinstance(exc_info.value.last_error, UpstreamTimeoutError)

    def test_timeouts_exhaust_as_timeout_error(self, client, session):
        session.add("listings", requests.Timeout("read timed out"))

        with pytest.raises(RetryExhaustedError) as exc_info:
            client.fetch_listings()
        assert isinstance(exc_info.value.last_error, UpstreamTimeoutError)

    def test_zero_retries(self, session):
        sleeps = SleepRecorder()
        client = UpstreamClient(BASE_URL, session=session, max_retries=0, sleep=sleeps)
        session.add("listings", status(503))

        with pytest.raises(RetryExhaustedError) as exc_info:
            client.fetch_listings()
        assert exc_info.value.attempts == 1
        assert sleeps.delays == []

    def test_custom_base_delay(self, session):
        sleeps = SleepRecorder()
        client = UpstreamClient(BASE_URL, session=session, retry_base_delay=0.5, sleep=sleeps)
        session.add("listings", status(500), status(500), ok([]))

        client.fetch_listings()
        assert sleeps.delays == pytest.approx([0.5, 1.0])


class TestBatchFetchDetails:
    @pytest.fixture
    def slow_session(self):
        # Calls overlap long enough for the concurrency bound to be observable
        session = FakeSession(call_delay=0.05)
        for listing_id in range(6, 11):
            session.add(f"listings/{listing_id}", ok({"id": str(listing_id)}))
        return session

    def test_partial_failures_never_raise(self, slow_session, sleeps):
        client = UpstreamClient(BASE_URL, session=slow_session, sleep=sleeps)
        ids = [str(i) for i in range(1, 11)]

        result = client.batch_fetch_details(ids, concurrency=3)

        assert len(result.details) == 5
        assert [d["id"] for d in result.details] == ["6", "7", "8", "9", "10"]
        assert result.failed_ids == ["1", "2", "3", "4", "5"]
        assert all(isinstance(error, UpstreamError) for _, error in result.failures)
        assert slow_session.max_concurrent <= 3

    def test_windows_are_separated_by_delay(self, slow_session, sleeps):
        client = UpstreamClient(BASE_URL, session=slow_session, detail_batch_delay=0.1, sleep=sleeps)

        client.batch_fetch_details([str(i) for i in range(6, 11)], concurrency=2)

        assert sleeps.delays == pytest.approx([0.1, 0.1])

    def test_default_concurrency(self, slow_session, sleeps):
        client = UpstreamClient(BASE_URL, session=slow_session, detail_concurrency=2, sleep=sleeps)
        client.batch_fetch_details([str(i) for i in range(6, 11)])
        assert slow_session.max_concurrent <= 2

    def test_empty_input(self, client, session):
        result = client.batch_fetch_details([])
        assert result.details == []
        assert result.failures == []
        assert session.calls == []


class TestPagination:
    @staticmethod
    def paged(page_sizes):
        def handler(path, params):
            page = params["page"]
            if page > len(page_sizes):
                return ok([])
            size = page_sizes[page - 1]
            if size is None:
                return status(404)
            return ok([{"id": f"{page}-{i}"} for i in range(size)])
        return handler

    def test_stops_on_short_page(self, client, session, sleeps):
        session.route("listings", self.paged([18, 5, 18]))

        listings = client.fetch_multiple_pages(max_pages=3, per_page=18)

        assert len(listings) == 23
        assert session.calls_to("listings") == 2
        assert sleeps.delays == pytest.approx([0.2])

    def test_stops_after_max_pages(self, client, session):
        session.route("listings", self.paged([2, 2, 2, 2]))

        listings = client.fetch_multiple_pages(max_pages=3, per_page=2)

        assert [item["id"] for item in listings] == ["1-0", "1-1", "2-0", "2-1", "3-0", "3-1"]
        assert session.calls_to("listings") == 3

    def test_page_error_keeps_earlier_pages(self, client, session):
        session.route("listings", self.paged([2, None, 2]))

        listings = client.fetch_multiple_pages(max_pages=3, per_page=2)

        assert len(listings) == 2
        assert session.calls_to("listings") == 2

    def test_zero_pages(self, client, session):
        assert client.fetch_multiple_pages(max_pages=0) == []
        assert session.calls == []


class TestHealthStatus:
    def test_healthy(self, client, session):
        session.add("listings", ok([{"id": "1"}]))

        health = client.get_health_status()

        assert health["status"] == "healthy"
        assert health["response_time_ms"] >= 0
        assert session.calls[0]["params"] == {"page": 1, "limit": 1}

    def test_unhealthy(self, client, session):
        session.add("listings", status(404))

        health = client.get_health_status()

        assert health["status"] == "unhealthy"
        assert "404" in health["error"]
        assert "last_check" in health
