import pytest
from prometheus_client import CollectorRegistry

from threescale_client.models import AuthType, ClientAuth, Params, Request, Transaction


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def auth_request() -> "Request":
    """
    single transaction request identified by app_id/app_key.
    """
    return Request(
        auth=ClientAuth(AuthType.SERVICE_TOKEN, "tok"),
        service="svc",
        transactions=[
            Transaction(
                params=Params(app_id="a", app_key="k"),
                metrics={"hits": 1, "other": 2},
            )
        ],
    )
