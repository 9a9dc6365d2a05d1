"""
docrest: a generator of RESTful web APIs over a document store.

Each resource is declared with a name, a field schema, the verbs it supports, and its default
sorting, paging, caching and cross-origin policies.  At request time, the pieces of this package
collaborate as follows:

:py:mod:`~docrest.schema`
    compiles a declarative field-to-type map into a JSON Schema used to validate writes
:py:mod:`~docrest.resources`
    the registry of resource definitions, built once from the configuration
:py:mod:`~docrest.query`
    compiles a read request's path and query parameters into a store-level query plan
:py:mod:`~docrest.payload`
    validates and normalizes write payloads
:py:mod:`~docrest.crud`
    executes plans and payloads against a :py:mod:`document store <docrest.store>`
:py:mod:`~docrest.envelope`
    wraps results in the uniform response envelope
:py:mod:`~docrest.wsgi`
    the WSGI application that dispatches requests through the above
"""

try:
    from .version import __version__
except ImportError:
    __version__ = "(unset)"

SYSTEM_NAME = "docrest"
POWERED_BY = "docrest"

class DocRestException(Exception):
    """
    a general base class for exceptions raised while compiling or serving a docrest API
    """
    pass

class SchemaError(DocRestException):
    """
    an exception indicating that a resource's schema declaration is malformed
    """
    pass

class InitializationError(DocRestException):
    """
    an exception indicating that the document store has not been (successfully) initialized;
    all requests on resources are rejected while in this state.
    """
    def __init__(self, message=None):
        if not message:
            message = "Database failed to initialize"
        super(InitializationError, self).__init__(message)

class ValidationError(DocRestException):
    """
    an exception indicating that a write payload does not conform to its resource's schema.

    This exception includes two extra public properties, ``field`` and ``reason``, which
    identify the first offending property (as a dot-delimited path; empty for the document
    as a whole) and what was wrong with it.
    """
    def __init__(self, field, reason, message=None):
        if not message:
            message = reason
            if field:
                message = "%s: %s" % (field, reason)
        super(ValidationError, self).__init__(message)
        self.field = field
        self.reason = reason

    def to_dict(self):
        return {"property": self.field, "message": self.reason}

class StoreError(DocRestException):
    """
    an exception indicating a failure reported by the document store.  The message is the
    store's own message; the original exception is available as ``__cause__``.
    """
    def __init__(self, message=None, cause=None):
        if not message:
            message = "Unknown document store failure"
            if cause:
                message = str(cause)
        super(StoreError, self).__init__(message)
        self.cause = cause

class ObjectNotFound(StoreError):
    """
    an exception indicating that a document to be updated does not exist
    """
    def __init__(self, collection, key=None, message=None):
        if not message:
            message = "Requested document not found in " + collection
            if key:
                message += ": " + str(key)
        super(ObjectNotFound, self).__init__(message)
        self.collection = collection
        self.key = key
