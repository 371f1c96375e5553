"""
error types raised by the client and the backend error code table.

Rejections reported by the backend (invalid keys, exceeded limits, ...)
are not raised, they come back as results carrying an error code.
"""


class ThreescaleError(Exception):
    """
    base exception for client errors.
    """

    def __init__(self, message: "str") -> "None":
        self.message = message
        super().__init__(message)


class ValidationError(ThreescaleError):
    """
    raised for invalid input before any request is sent.
    """


class InvalidMetricValueError(ValidationError):
    """
    raised when a metric would end up with a negative value.
    """

    def __init__(self, name: "str", value: "int") -> "None":
        self.name = name
        self.value = value
        super().__init__(
            f"invalid value {value} for metric {name}, "
            "the backend rejects negative usage"
        )


class DecodeError(ThreescaleError):
    """
    raised when the backend response body cannot be parsed.
    """


class ServerError(ThreescaleError):
    """
    raised when the backend answers with a 5xx status.
    """

    def __init__(self, status_code: "int", message: "str" = "") -> "None":
        self.status_code = status_code
        super().__init__(
            f"unable to process request - status: {status_code} {message}".rstrip()
        )


# backend error code -> HTTP status, see apisonator docs/rfcs/error_responses.md
ERROR_CODE_STATUS: "dict[str, int]" = {
    "access_token_storage_error": 400,
    "not_valid_data": 400,
    "bad_request": 400,
    "access_token_already_exists": 400,
    "content_type_invalid": 400,
    "provider_key_invalid": 403,
    "user_requires_registration": 403,
    "user_key_invalid": 403,
    "authentication_error": 403,
    "provider_key_or_service_token_required": 403,
    "service_token_invalid": 403,
    "application_not_found": 404,
    "application_token_invalid": 404,
    "service_id_invalid": 404,
    "metric_invalid": 404,
    "limits_exceeded": 409,
    "oauth_not_enabled": 409,
    "redirect_uri_invalid": 409,
    "redirect_url_invalid": 409,
    "application_not_active": 409,
    "application_key_invalid": 409,
    "referrer_not_allowed": 409,
    "application_has_inconsistent_data": 422,
    "referrer_filter_invalid": 422,
    "required_params_missing": 422,
    "usage_value_invalid": 422,
    "service_id_missing": 422,
}


def code_to_status_code(error_code: "str") -> "int | None":
    """
    maps a backend error code to its HTTP status. Returns None for
    codes the table does not know.
    """
    return ERROR_CODE_STATUS.get(error_code)
