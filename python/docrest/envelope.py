"""
The response envelope builder and the JSON rendering of responses.

Reads that return documents are wrapped in a uniform envelope::

    {
        "count":   3,        # the number of items
        "items":   [...],    # the documents
        "cached":  false,    # whether the result came from a cache (never, currently)
        "elapsed": 4         # milliseconds from the arrival of the request to the result
    }

Deletes are wrapped as ``{"success": true, "result": {"n": 1}}``; other writes return the
stored document unwrapped.  Errors are returned as ``{"error": ...}``.
"""
import re, json, time, datetime
from collections import OrderedDict
from collections.abc import Mapping

from bson import ObjectId

from . import ValidationError

JSONP_CTYPE = "application/javascript"
JSON_CTYPE = "application/json"

_callback_re = re.compile(r"^[\w$][\w$.]*(\[[\w$'\"]+\])*$")

def elapsed_ms(started: float) -> int:
    """
    return the number of milliseconds since a given time as given by :py:func:`time.monotonic`
    """
    return int((time.monotonic() - started) * 1000)

def read_envelope(result, started: float) -> Mapping:
    """
    wrap the result of a read into an envelope.  A single document is treated as a list of
    one; None (a document that was not found) as an empty list.
    :param result:         the document or list of documents
    :param float started:  the arrival time of the request as given by :py:func:`time.monotonic`
    """
    if result is None:
        result = []
    elif not isinstance(result, list):
        result = [result]
    return OrderedDict([
        ("count", len(result)),
        ("items", result),
        ("cached", False),
        ("elapsed", elapsed_ms(started))
    ])

def delete_envelope(deleted: int) -> Mapping:
    return OrderedDict([("success", deleted > 0), ("result", {"n": deleted})])

def error_body(err) -> Mapping:
    """
    create an error response body from an exception or a message
    """
    if isinstance(err, ValidationError):
        err = err.to_dict()
    elif isinstance(err, Exception):
        err = str(err)
    return {"error": err}

class DocumentEncoder(json.JSONEncoder):
    """
    a JSON encoder that can render store-native values: identifiers are written as their
    hexadecimal strings and datetimes in ISO 8601 format.
    """
    def default(self, obj):
        if isinstance(obj, ObjectId):
            return str(obj)
        if isinstance(obj, (datetime.datetime, datetime.date)):
            return obj.isoformat()
        return super(DocumentEncoder, self).default(obj)

def to_json(data, indent=None) -> str:
    return json.dumps(data, indent=indent, cls=DocumentEncoder)

def valid_callback(name: str) -> bool:
    """
    return True if the given string is acceptable as a JSONP callback function name
    """
    return bool(name) and len(name) < 256 and bool(_callback_re.match(name))

def render(data, callback: str=None, indent=None):
    """
    serialize a response body.  If a (valid) JSONP callback name is given, the JSON output is
    wrapped into a call to that function.
    :return:  a 2-tuple of the content and its content type
    """
    out = to_json(data, indent)
    if callback and valid_callback(callback):
        return ("/**/ typeof %s === 'function' && %s(%s);" % (callback, callback, out), JSONP_CTYPE)
    return (out, JSON_CTYPE)
