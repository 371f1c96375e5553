import enum
from urllib.parse import quote_plus

import httpx
import structlog

from threescale_client.errors import ValidationError
from threescale_client.models import (
    ClientAuth,
    Extensions,
    Metrics,
    Params,
    Request,
    Transaction,
)

logger = structlog.get_logger()

SERVICE_ID_KEY = "service_id"
EXTENSIONS_HEADER = "3scale-options"

# each tuple is (Params attribute, wire key)
PARAMS_WIRE_KEYS: "tuple[tuple[str, str], ...]" = (
    ("app_id", "app_id"),
    ("app_key", "app_key"),
    ("referrer", "referrer"),
    ("user_id", "user_id"),
    ("user_key", "user_key"),
)

# dropped from the wire when user_key is present
_APP_ID_PATTERN_KEYS = frozenset({"app_id", "app_key"})


class CallKind(enum.Enum):
    AUTH = "auth"
    AUTH_REP = "auth_rep"
    REPORT = "report"


# each value is (HTTP method, endpoint path)
ENDPOINTS: "dict[CallKind, tuple[str, str]]" = {
    CallKind.AUTH: ("GET", "/transactions/authorize.xml"),
    CallKind.AUTH_REP: ("GET", "/transactions/authrep.xml"),
    CallKind.REPORT: ("POST", "/transactions.xml"),
}


def auth_to_values(auth: "ClientAuth") -> "list[tuple[str, str]]":
    return [(auth.type.value, auth.value)]


def params_to_values(params: "Params") -> "list[tuple[str, str]]":
    """
    returns the non-empty params as wire key/value pairs. When user_key
    is set the app_id authentication pattern is left out.
    """
    values: "list[tuple[str, str]]" = []
    for attr, key in PARAMS_WIRE_KEYS:
        value = getattr(params, attr)
        if not value:
            continue
        if params.user_key and key in _APP_ID_PATTERN_KEYS:
            continue
        values.append((key, value))
    return values


def metrics_to_values(metrics: "Metrics") -> "list[tuple[str, str]]":
    return [(f"usage[{name}]", str(value)) for name, value in metrics.items()]


def transaction_to_values(
    index: "int", transaction: "Transaction"
) -> "list[tuple[str, str]]":
    """
    formats a transaction for batch reporting, every key is namespaced
    by the transaction's position in the batch.
    """
    prefix = f"transactions[{index}]"
    values = [
        (f"{prefix}[{key}]", value)
        for key, value in params_to_values(transaction.params)
    ]
    values.extend(
        (f"{prefix}[usage][{name}]", str(value))
        for name, value in transaction.metrics.items()
    )
    if transaction.timestamp:
        values.append((f"{prefix}[timestamp]", str(transaction.timestamp)))
    return values


def encode_extensions(extensions: "Extensions") -> "str":
    """
    escapes keys and values so '=', '&' and ';' stay unambiguous,
    then joins them as key=value pairs separated by '&'.
    """
    return "&".join(
        f"{quote_plus(key)}={quote_plus(value)}" for key, value in extensions.items()
    )


def validate_request(request: "Request") -> "None":
    if not request.service:
        raise ValidationError("service id is required")
    if not request.transactions:
        raise ValidationError("at least one transaction is required")
    for index, transaction in enumerate(request.transactions):
        if not transaction.params.identified:
            raise ValidationError(
                f"transaction {index} requires either app_id or user_key"
            )


def request_to_values(
    request: "Request", kind: "CallKind"
) -> "list[tuple[str, str]]":
    values = [(SERVICE_ID_KEY, request.service)]
    values.extend(auth_to_values(request.auth))

    if kind is CallKind.REPORT:
        for index, transaction in enumerate(request.transactions):
            values.extend(transaction_to_values(index, transaction))
        return values

    # auth and authrep handle a single transaction, others are discarded
    transaction = request.transactions[0]
    values.extend(params_to_values(transaction.params))
    values.extend(metrics_to_values(transaction.metrics))
    return values


def build_request(
    client: "httpx.AsyncClient",
    base_url: "str",
    request: "Request",
    kind: "CallKind",
    timeout: "float | None" = None,
) -> "httpx.Request":
    """
    validates the request and builds the HTTP request for the given
    call kind. Report parameters travel in the query string of the
    POST, as the backend expects.
    """
    validate_request(request)
    if kind is not CallKind.REPORT and len(request.transactions) > 1:
        logger.debug(
            "extra_transactions_discarded",
            kind=kind.value,
            discarded=len(request.transactions) - 1,
        )

    method, path = ENDPOINTS[kind]
    headers = {"Accept": "application/xml"}
    if request.extensions is not None:
        headers[EXTENSIONS_HEADER] = encode_extensions(request.extensions)

    extra: "dict[str, float]" = {}
    if timeout is not None:
        extra["timeout"] = timeout

    return client.build_request(
        method,
        f"{base_url}{path}",
        params=request_to_values(request, kind),
        headers=headers,
        **extra,
    )
