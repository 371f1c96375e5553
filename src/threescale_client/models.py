import enum
from dataclasses import dataclass, field

import httpx

from threescale_client.errors import ValidationError

# metric name -> usage value or delta
Metrics = dict[str, int]
# parent metric -> child metrics
Hierarchy = dict[str, list[str]]
# extension key -> value, sent in the 3scale-options header
Extensions = dict[str, str]

# extension keys understood by the backend
HIERARCHY_EXTENSION = "hierarchy"
LIMIT_EXTENSION = "limit_headers"
FLAT_USAGE_EXTENSION = "flat_usage"
NO_BODY_EXTENSION = "no_body"
REJECTION_REASON_HEADER_EXTENSION = "rejection_reason_header"


class AuthType(enum.Enum):
    """
    AuthType is the closed set of ways a client authenticates
    against a service. The value is the query parameter name.
    """

    # a token scoped to a single service
    SERVICE_TOKEN = "service_token"
    # a key valid for all services under an account
    PROVIDER_KEY = "provider_key"


class Period(enum.Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ETERNITY = "eternity"


@dataclass(frozen=True, slots=True)
class ClientAuth:
    type: "AuthType"
    value: "str"

    def __post_init__(self) -> "None":
        if not self.value:
            raise ValidationError(f"empty credential for {self.type.value}")


@dataclass(frozen=True, slots=True)
class Params:
    """
    Params identify the application (and optionally the end user)
    a transaction belongs to.

    app_id and user_key are mutually exclusive authentication patterns.
    When both are set, user_key wins and app_id/app_key are not sent.
    """

    app_id: "str" = ""
    # optional secret used together with app_id
    app_key: "str" = ""
    # only required when referrer filtering is enabled, "*" bypasses it
    referrer: "str" = ""
    # only required when the application rate limits end users
    user_id: "str" = ""
    user_key: "str" = ""

    @property
    def identified(self) -> "bool":
        return bool(self.app_id or self.user_key)


@dataclass(frozen=True, slots=True)
class Transaction:
    params: "Params"
    metrics: "Metrics" = field(default_factory=dict)
    # unix timestamp, only honoured by the report endpoint
    timestamp: "int" = 0


@dataclass(frozen=True, slots=True)
class Request:
    """
    Request is everything needed for a single call to the backend.
    Authorize and AuthRep only use the first transaction, Report
    sends all of them as one batch.
    """

    auth: "ClientAuth"
    service: "str"
    transactions: "list[Transaction]"
    extensions: "Extensions | None" = None


@dataclass(frozen=True, slots=True)
class PeriodWindow:
    period: "Period"
    # unix timestamp marking the start of the window
    start: "int"
    # unix timestamp marking the end of the window
    end: "int"


@dataclass(frozen=True, slots=True)
class UsageReport:
    period_window: "PeriodWindow"
    max_value: "int"
    current_value: "int"


# metric name -> one report per limited period
UsageReports = dict[str, list[UsageReport]]


@dataclass(frozen=True, slots=True)
class RateLimits:
    """
    RateLimits holds the values returned by the limit_headers extension.
    A value of -1 means there is no limit. None means the header was
    missing or could not be parsed.
    """

    # hits left before authorizations start being denied
    limit_remaining: "int | None" = None
    # seconds left in the current limiting period
    limit_reset: "int | None" = None


@dataclass(frozen=True, slots=True)
class AuthorizeResult:
    """
    AuthorizeResult is returned by authorize and auth_rep calls.
    A rejection by the backend is a normal result with authorized
    set to False and error_code naming the reason.
    """

    authorized: "bool"
    usage_reports: "UsageReports" = field(default_factory=dict)
    error_code: "str" = ""
    # human readable reason, e.g. "usage limits are exceeded"
    rejection_reason: "str" = ""
    # None unless the hierarchy extension was requested
    hierarchy: "Hierarchy | None" = None
    # None unless the limit_headers extension was requested and returned
    rate_limits: "RateLimits | None" = None
    status_code: "int" = 0
    raw_response: "httpx.Response | None" = field(
        default=None, repr=False, compare=False
    )


@dataclass(frozen=True, slots=True)
class ReportResult:
    accepted: "bool"
    error_code: "str" = ""
    status_code: "int" = 0
    raw_response: "httpx.Response | None" = field(
        default=None, repr=False, compare=False
    )
