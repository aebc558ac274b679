# tradejournal/remote_api/exceptions.py
#
#
#######################################################################################################################
#
# Functions:

class RemoteAPIError(Exception):
    """Base exception for remote_api errors."""
    pass

class APIConnectionError(RemoteAPIError):
    """Raised for network or connection issues. The remote may be fine; it was not reached."""
    pass

class APIRequestError(RemoteAPIError):
    """Raised when the remote rejects the request itself (unknown column or table, bad filter, bad data)."""
    def __init__(self, message: str, response_data: dict = None):
        super().__init__(message)
        self.response_data = response_data or {}

class APIResponseError(RemoteAPIError):
    """Raised for other non-2xx responses or issues parsing the response."""
    def __init__(self, status_code: int, message: str, response_data: dict = None):
        super().__init__(f"API Error {status_code}: {message}")
        self.status_code = status_code
        self.response_data = response_data or {}

class AuthenticationError(RemoteAPIError):
    """Raised for authentication failures."""
    pass

#
# End of tradejournal/remote_api/exceptions.py
########################################################################################################################
