"""
decodes backend responses into AuthorizeResult and ReportResult.

The authorization endpoints answer with a <status> document, or an
<error code=".."> document when the request itself is rejected:

    <status>
      <authorized>false</authorized>
      <reason>usage limits are exceeded</reason>
      <usage_reports>
        <usage_report metric="hits" period="minute">
          <period_start>2018-09-01 14:44:00 +0000</period_start>
          <period_end>2018-09-01 14:45:00 +0000</period_end>
          <max_value>1</max_value>
          <current_value>1</current_value>
        </usage_report>
      </usage_reports>
      <hierarchy>
        <metric name="hits" children="example sample"/>
      </hierarchy>
    </status>

Extension data is decoded on a best effort basis: a usage report or
rate limit header that cannot be parsed is dropped without affecting
the rest of the result.
"""

import xml.etree.ElementTree as ET
from datetime import datetime

import httpx
import structlog

from threescale_client.errors import DecodeError, ServerError
from threescale_client.models import (
    HIERARCHY_EXTENSION,
    LIMIT_EXTENSION,
    NO_BODY_EXTENSION,
    AuthorizeResult,
    Extensions,
    Hierarchy,
    Period,
    PeriodWindow,
    RateLimits,
    ReportResult,
    UsageReport,
    UsageReports,
)

logger = structlog.get_logger()

LIMIT_REMAINING_HEADER = "3scale-Limit-Remaining"
LIMIT_RESET_HEADER = "3scale-Limit-Reset"
REJECTION_REASON_HEADER = "3scale-Rejection-Reason"

# the backend renders times as Ruby does, e.g. "2019-02-22 14:32:00 +0000"
TIME_LAYOUT = "%Y-%m-%d %H:%M:%S %z"


def _parse_xml(body: "bytes") -> "ET.Element":
    try:
        return ET.fromstring(body)
    except ET.ParseError as e:
        raise DecodeError(f"malformed response body: {e}") from e


def _check_server_error(response: "httpx.Response") -> "None":
    if response.status_code >= 500:
        raise ServerError(response.status_code, response.reason_phrase)


def parse_time(value: "str") -> "int":
    """
    converts a backend timestamp to unix seconds.
    """
    return int(datetime.strptime(value.strip(), TIME_LAYOUT).timestamp())


def _parse_bool(value: "str") -> "bool":
    text = value.strip()
    if text in ("true", "1"):
        return True
    if text in ("false", "0", ""):
        return False
    raise DecodeError(f"unexpected authorized value {value!r}")


def _child_int(element: "ET.Element", tag: "str") -> "int":
    return int(element.findtext(tag, default="0").strip())


def convert_usage_report(element: "ET.Element") -> "UsageReport":
    """
    converts a single <usage_report> element. Raises ValueError when the
    period or any of the values cannot be parsed.
    """
    period_window = PeriodWindow(
        period=Period(element.get("period", "")),
        start=parse_time(element.findtext("period_start", default="")),
        end=parse_time(element.findtext("period_end", default="")),
    )
    return UsageReport(
        period_window=period_window,
        max_value=_child_int(element, "max_value"),
        current_value=_child_int(element, "current_value"),
    )


def decode_usage_reports(root: "ET.Element") -> "UsageReports":
    """
    collects every usage report, grouped by metric. A metric limited on
    several periods gets one entry per period.
    """
    reports: "UsageReports" = {}

    for element in root.iterfind("usage_reports/usage_report"):
        metric = element.get("metric", "")
        try:
            report = convert_usage_report(element)
        except ValueError as e:
            logger.warning("usage_report_skipped", metric=metric, error=str(e))
            continue
        reports.setdefault(metric, []).append(report)

    return reports


def decode_hierarchy(root: "ET.Element") -> "Hierarchy":
    """
    builds the parent -> children map from the hierarchy extension,
    children keep their first occurrence order and duplicates are removed.
    """
    hierarchy: "Hierarchy" = {}

    for element in root.iterfind("hierarchy/metric"):
        name = element.get("name", "")
        children = element.get("children", "").split()
        if not children:
            continue

        known = hierarchy.setdefault(name, [])
        for child in children:
            if child not in known:
                known.append(child)

    return hierarchy


def _parse_int_header(response: "httpx.Response", header: "str") -> "int | None":
    value = response.headers.get(header)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning("rate_limit_header_invalid", header=header, value=value)
        return None


def decode_rate_limits(response: "httpx.Response") -> "RateLimits | None":
    """
    reads the limit_headers extension. Each header is parsed on its own,
    None is returned when neither is usable.
    """
    remaining = _parse_int_header(response, LIMIT_REMAINING_HEADER)
    reset = _parse_int_header(response, LIMIT_RESET_HEADER)
    if remaining is None and reset is None:
        return None
    return RateLimits(limit_remaining=remaining, limit_reset=reset)


def _requested(extensions: "Extensions | None", key: "str") -> "bool":
    return extensions is not None and key in extensions


def decode_no_body_authorize(
    response: "httpx.Response", extensions: "Extensions | None"
) -> "AuthorizeResult":
    """
    with the no_body extension the outcome is carried by the status
    code and the rejection reason header only.
    """
    rate_limits = None
    if _requested(extensions, LIMIT_EXTENSION):
        rate_limits = decode_rate_limits(response)

    authorized = response.status_code == httpx.codes.OK
    return AuthorizeResult(
        authorized=authorized,
        error_code="" if authorized else response.headers.get(
            REJECTION_REASON_HEADER, ""
        ),
        rate_limits=rate_limits,
        status_code=response.status_code,
        raw_response=response,
    )


def decode_authorize(
    response: "httpx.Response", extensions: "Extensions | None" = None
) -> "AuthorizeResult":
    _check_server_error(response)

    if extensions is not None and extensions.get(NO_BODY_EXTENSION) == "1":
        return decode_no_body_authorize(response, extensions)

    root = _parse_xml(response.content)

    # the rejection reason header is more specific than the body's code
    error_code = response.headers.get(REJECTION_REASON_HEADER) or root.get("code", "")

    hierarchy = None
    if _requested(extensions, HIERARCHY_EXTENSION):
        hierarchy = decode_hierarchy(root)

    rate_limits = None
    if _requested(extensions, LIMIT_EXTENSION):
        rate_limits = decode_rate_limits(response)

    return AuthorizeResult(
        authorized=_parse_bool(root.findtext("authorized", default="")),
        usage_reports=decode_usage_reports(root),
        error_code=error_code,
        rejection_reason=root.findtext("reason", default=""),
        hierarchy=hierarchy,
        rate_limits=rate_limits,
        status_code=response.status_code,
        raw_response=response,
    )


def decode_report(response: "httpx.Response") -> "ReportResult":
    """
    a report is accepted on any 2xx status. Other 4xx statuses carry
    an <error code=".."/> document.
    """
    if response.is_success:
        return ReportResult(
            accepted=True,
            status_code=response.status_code,
            raw_response=response,
        )

    _check_server_error(response)

    root = _parse_xml(response.content)
    return ReportResult(
        accepted=False,
        error_code=root.get("code", ""),
        status_code=response.status_code,
        raw_response=response,
    )
