"""
OAuth error types raised by the proxy provider and the auth endpoints.
Rendered as {"error", "error_description"} JSON by the handler registered in main.
"""


class OAuthError(Exception):
    error = "server_error"
    status_code = 500

    def __init__(self, error_description: str, status_code: int | None = None):
        super().__init__(error_description)
        self.error_description = error_description
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.error, "error_description": self.error_description}


class InvalidRequestError(OAuthError):
    error = "invalid_request"
    status_code = 400


class InvalidClientError(OAuthError):
    error = "invalid_client"
    status_code = 401


class InvalidGrantError(OAuthError):
    error = "invalid_grant"
    status_code = 400


class UnsupportedGrantTypeError(OAuthError):
    error = "unsupported_grant_type"
    status_code = 400


class InvalidClientMetadataError(OAuthError):
    error = "invalid_client_metadata"
    status_code = 400


class ServerError(OAuthError):
    error = "server_error"
    status_code = 500


class TemporarilyUnavailableError(OAuthError):
    """Upstream unreachable; the client may retry."""

    error = "temporarily_unavailable"
    status_code = 503


class InvalidTokenError(OAuthError):
    error = "invalid_token"
    status_code = 401
