"""
Support for JSON-formatted error content for HTTP responses.

Clients should use the HTTP status to determine whether a request failed; the body of an error
response carries a machine-readable explanation as a JSON object with a single ``error``
property whose value is either a message string or an object describing the problem (e.g.
``{"property": "name", "message": "field is required"}``).
"""
from collections.abc import Mapping

def make_message(explain) -> Mapping:
    """
    create an error message object from an explanation (a string or a JSON-compatible object)
    """
    return {"error": explain}

class FatalError(Exception):
    """
    an exception that can be used to send data to be returned to the web client as an error
    JSON message object up the call stack.
    """
    def __init__(self, code: int, reason: str, explain=None):
        """
        :param int    code:  the HTTP code to respond with
        :param str  reason:  the reason to return as the HTTP status message
        :param explain:      the explanation of the error returned in the body of the message;
                             either a str or a JSON-compatible object.  If not provided, the
                             reason is used.
        """
        if not explain:
            explain = reason or ''
        super(FatalError, self).__init__(explain if isinstance(explain, str) else reason)
        self.code = code
        self.reason = reason
        self.explain = explain

    def to_message(self) -> Mapping:
        return make_message(self.explain)
