"""
a generic framework for building RESTful web services on WSGI.  A
:py:class:`~docrest.web.rest.base.WSGIApp` answers requests under a base path and delegates them
to :py:class:`~docrest.web.rest.base.ServiceApp` instances, which create a
:py:class:`~docrest.web.rest.base.Handler` for each request.
"""
from .base import *
from .jsonerr import FatalError, make_message
