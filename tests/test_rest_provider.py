# =============================================================================
# TEST REST PROVIDER
# =============================================================================
# Request shapes and error classification against a mocked requests.Session
# =============================================================================

import json
from unittest.mock import MagicMock

import pytest
import requests

from order_service.errors import DataProviderError, ErrorKind, VersionConflictError
from order_service.providers import NO_PAGINATION, Filter, Pagination, RestDataProvider
from order_service.providers.rest import encode_filter


def response(status=200, body=None, reason="OK"):
    resp = requests.Response()
    resp.status_code = status
    resp.reason = reason
    resp._content = b"" if body is None else json.dumps(body).encode()
    resp.url = "http://data.test/resource"
    return resp


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session, headers={})


@pytest.fixture
def rest(session) -> RestDataProvider:
    return RestDataProvider(base_url="http://data.test/", token="secret", timeout=3, session=session)


class TestRequests:

    def test_auth_header(self, rest, session):
        assert session.headers["Authorization"] == "Bearer secret"

    def test_create_posts_without_id_and_sends_nulls(self, rest, session):
        session.request.return_value = response(201, {"data": {"detail_id": 5, "order_id": 1}})

        row = rest.create("order_details", {"detail_id": -1, "order_id": 1, "note": "", "detail_cost": 10,
                                            "created_at": "x"})

        assert row == {"detail_id": 5, "order_id": 1}
        session.request.assert_called_once_with(
            "POST", "http://data.test/order_details", json={"order_id": 1, "note": None, "detail_cost": 10}, timeout=3)

    def test_update_patches_and_keeps_explicit_nulls(self, rest, session):
        session.request.return_value = response(200, {"order_id": 3, "version": 2})

        rest.update("orders", 3, {"order_id": 3, "notes": "", "version": 1, "updated_at": "x"})

        session.request.assert_called_once_with(
            "PATCH", "http://data.test/orders/3", json={"notes": None, "version": 1}, timeout=3)

    def test_delete(self, rest, session):
        session.request.return_value = response(204)
        assert rest.delete_one("payments", 9) is None
        session.request.assert_called_once_with("DELETE", "http://data.test/payments/9", timeout=3)

    def test_get_list_filters_and_pagination(self, rest, session):
        session.request.return_value = response(200, [{"detail_id": 1}])

        rows = rest.get_list("order_details", [Filter("order_id", "eq", 4)], Pagination(current=2, page_size=20))

        assert rows == [{"detail_id": 1}]
        session.request.assert_called_once_with(
            "GET", "http://data.test/order_details",
            params={"order_id": "eq.4", "limit": 20, "offset": 20}, timeout=3)

    def test_get_list_without_pagination(self, rest, session):
        session.request.return_value = response(200, {"data": []})
        assert rest.get_list("payments", None, NO_PAGINATION) == []
        assert session.request.call_args.kwargs["params"] == {}

    def test_encode_filter(self):
        assert encode_filter(Filter("id", "in", [1, 2])) == "in.(1,2)"
        assert encode_filter(Filter("film_id", "eq", None)) == "eq.null"
        assert encode_filter(Filter("is_active", "eq", True)) == "eq.true"

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValueError):
            Filter("id", "like", 1)


class TestErrors:
    """Every failure leaves the provider as a DataProviderError with a kind."""

    def test_conflict(self, rest, session):
        session.request.return_value = response(409, {"message": "version mismatch"}, "Conflict")
        with pytest.raises(VersionConflictError) as exc:
            rest.update("orders", 1, {"version": 1})
        assert exc.value.kind == ErrorKind.VERSION_CONFLICT
        assert exc.value.detail == "version mismatch"

    @pytest.mark.parametrize("status", [400, 404, 422])
    def test_validation(self, rest, session, status):
        session.request.return_value = response(status, {"detail": "bad"}, "Bad")
        with pytest.raises(DataProviderError) as exc:
            rest.create("payments", {"amount": 1})
        assert exc.value.kind == ErrorKind.VALIDATION
        assert exc.value.remote_status == status

    def test_server_error_is_network(self, rest, session):
        session.request.return_value = response(503, None, "Service Unavailable")
        with pytest.raises(DataProviderError) as exc:
            rest.delete_one("payments", 1)
        assert exc.value.kind == ErrorKind.NETWORK

    def test_connection_error(self, rest, session):
        session.request.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(DataProviderError) as exc:
            rest.get_list("orders")
        assert exc.value.kind == ErrorKind.NETWORK

    def test_timeout(self, rest, session):
        session.request.side_effect = requests.exceptions.Timeout()
        with pytest.raises(DataProviderError) as exc:
            rest.get_list("orders")
        assert exc.value.kind == ErrorKind.NETWORK

    def test_error_list_in_ok_response(self, rest, session):
        body = {"errors": [{"message": 'null value in column "amount" violates not-null constraint'}]}
        session.request.return_value = response(200, body)
        with pytest.raises(DataProviderError) as exc:
            rest.create("payments", {"amount": None})
        assert exc.value.kind == ErrorKind.VALIDATION
        assert exc.value.detail == 'Field "amount" is required'

    def test_update_of_missing_record(self, rest, session):
        session.request.return_value = response(200, [])
        with pytest.raises(DataProviderError) as exc:
            rest.update("orders", 99, {"notes": "x"})
        assert exc.value.remote_status == 404
