"""
The base REST framework classes
"""
import re, json
from abc import ABCMeta, abstractmethod
from collections.abc import Mapping
from logging import Logger
from typing import Callable, List
from urllib.parse import parse_qs
from wsgiref.headers import Headers

from ...config import ConfigurationException
from .jsonerr import make_message

__all__ = ["Handler", "NotFoundHandler", "ServiceApp", "WSGIApp"]

class Handler(object):
    """
    a default web request handler that also serves as a base class for the handlers specialized
    for the supported resource paths.  A handler is created for a single request; its
    :py:meth:`handle` method dispatches the request to a method named ``do_METH`` where METH
    is the requested HTTP method.
    """

    # the encoder used by send_json()
    json_encoder = json.JSONEncoder

    def __init__(self, path: str, wsgienv: dict, start_resp: Callable, config: dict={},
                 log: Logger=None, app=None):
        self._path = path
        self._env = wsgienv
        self._start = start_resp
        self._hdr = Headers([])
        self._code = 0
        self._msg = "unknown status"
        self.cfg = config
        self.log = log

        self._app = app
        if self._app and hasattr(app, 'include_headers'):
            self._hdr = Headers(list(app.include_headers.items()))

        self._meth = self._env.get('REQUEST_METHOD', 'GET')

    @property
    def app(self):
        """
        the ServiceApp instance that created this handler
        """
        return self._app

    def get_query_params(self) -> Mapping:
        """
        return the query parameters attached to the request URL.  Where a parameter is given
        more than once, the last value is returned.
        """
        out = {}
        qstr = self._env.get('QUERY_STRING')
        if qstr:
            for name, vals in parse_qs(qstr, keep_blank_values=True).items():
                out[name] = vals[-1]
        return out

    def send_error(self, code, message, content=None, contenttype=None, ashead=None, encoding='utf-8'):
        """
        respond to the client with an error of a given code and reason

        :param int code:        the HTTP response code to assign
        :param str message:     the briefly-stated reason to give for the error; this text
                                is sent as the message that accompanies the code in the HTTP
                                response header
        :param content:         Content to return as the body.
                                :type content: str or byte or a list of either
        :param str contenttype: the MIME type to associate with the returned content.
        :param bool ashead:     True if this is being sent in response to a HEAD request; if so,
                                the size and type of the content will be included in the headers,
                                but the content will be withheld.  If not provided, it will be set
                                to True if the originally requested method is "HEAD".
        :param str encoding:    The encoding required to turn str content into bytes.
        """
        return self._send(code, message, content, contenttype, ashead, encoding)

    def send_ok(self, content=None, contenttype=None, message="OK", code=200, ashead=None, encoding='utf-8'):
        """
        respond to the client a response of success.

        :param content:         Content to return as the body.  If not provided, the body will be
                                empty.
                                :type content: str or byte
        :param str contenttype: the MIME type to associate with the returned content.
        :param str message:     the briefly-stated reason to give in the HTTP response header.
        :param int code:        the HTTP response code to assign; the default is 200.
        :param bool ashead:     True if this is being sent in response to a HEAD request
        :param str encoding:    The encoding required to turn str content into bytes.
        """
        return self._send(code, message, content, contenttype, ashead, encoding)

    def send_json(self, data, message="OK", code=200, ashead=None, encoding='utf-8'):
        """
        Send some data formatted as JSON.
        :param data:     the data to encode in JSON
                         :type data: dict, list, or string
        """
        return self._send(code, message, json.dumps(data, cls=self.json_encoder), "application/json",
                          ashead, encoding)

    def send_options(self, allowed_methods: List[str]=None):
        """
        send a response to an OPTIONS request listing the HTTP methods allowed on the requested
        resource.  Any cross-origin headers should be added before calling this.
        :param List[str] allowed_methods:   a list of the HTTP methods that are allowed for request
        """
        meths = list(allowed_methods or [])
        if 'OPTIONS' not in meths:
            meths.append('OPTIONS')
        self.set_header('Allow', ", ".join(meths))
        return self.send_ok(message="No Content", code=204)

    def send_error_obj(self, code: int, reason: str, explain=None, ashead=None):
        """
        respond with an error whose body is a JSON object of the form, ``{"error": explain}``.
        :param int    code:  the HTTP response code
        :param str  reason:  the HTTP status message; this is also the explanation if one is
                             not given
        :param explain:      a str or JSON-compatible object explaining the error
        """
        return self.send_json(make_message(explain or reason), reason, code, ashead)

    def _send(self, code, message, content, contenttype, ashead, encoding):
        if ashead is None:
            ashead = self._meth.upper() == "HEAD"
        self.set_response(code, message)

        if content is None:
            content = []
        elif not isinstance(content, list):
            content = [ content ]
        if any(not isinstance(c, (str, bytes)) for c in content):
            raise TypeError("send_*: non-str/bytes found in content")
        if content and not contenttype:
            contenttype = "text/plain" if isinstance(content[0], str) else "application/octet-stream"
        content = [c.encode(encoding) if isinstance(c, str) else c for c in content]

        if contenttype:
            self.set_header("Content-Type", contenttype)
        if content:
            self.set_header("Content-Length", str(sum(len(c) for c in content)))

        self.end_headers()
        return [] if ashead else content

    def add_header(self, name, value):
        """
        record a name-value pair to be sent as part of the response header.

        :param str name:  the name of the header field to cache
        :param str value: the value to give to the header field
        :raises UnicodeEncodeError:  if name or value includes non-Latin-1 characters (see PEP 3333)
        """
        e = "ISO-8859-1"
        (name.encode(e), value.encode(e))

        self._hdr.add_header(name, value)

    def set_header(self, name, value):
        """
        set a response header field, replacing any previously recorded value for it
        """
        del self._hdr[name]
        self.add_header(name, value)

    def set_response(self, code, message):
        """
        record the response code and message to be sent when the response is triggered to push out.
        """
        self._code = code
        self._msg = message

    def end_headers(self):
        """
        trigger the delivery of response's header to the web client.
        """
        status = "{0} {1}".format(str(self._code), self._msg)
        self._start(status, self._hdr.items(), None)

    def handle(self):
        """
        handle the request encapsulated in this Handler (at construction time).

        The default implementation looks for a Handler method of the form, `do_`METH(), where METH is
        is the HTTP method requested (e.g. GET, HEAD, etc.) and calls it with the requested URL path
        (as set at construction).  If the requested method is HEAD and there is no `do_HEAD()`,
        `do_GET()` is called with a second argument set to True.
        """
        meth = self._env.get('HTTP_X_HTTP_METHOD_OVERRIDE') or self._meth
        meth_handler = getattr(self, 'do_'+meth, None)

        try:
            if meth_handler:
                return meth_handler(self._path)
            elif meth == "HEAD" and hasattr(self, "do_GET"):
                return self.do_GET(self._path, ashead=True)
            else:
                return self.send_error_obj(405, "Method Not Allowed",
                                           meth + " not supported on this resource")
        except Exception as ex:
            if self.log:
                self.log.exception("Unexpected failure: "+str(ex))
            return self.send_error_obj(500, "Internal Server Error", "Server failure")

class NotFoundHandler(Handler):
    """
    a request Handler that always returns 404 Not Found with a JSON body.  This is used for
    requests that are not recognized by any service.
    """
    def handle(self):
        return self.send_error_obj(404, "Not Found", "Unsupported URI")


class ServiceApp(metaclass=ABCMeta):
    """
    a base class WSGI implementation intended to run as a delegate handling a particular path
    within another WSGI application.
    """

    def __init__(self, appname: str, log: Logger, config: Mapping=None):
        self.log = log
        if config is None:
            config = {}
        self.cfg = config
        self._name = appname

        self.include_headers = Headers()
        if config.get("include_headers"):
            try:
                if isinstance(config.get("include_headers"), Mapping):
                    self.include_headers = Headers(list(config.get("include_headers").items()))
                elif isinstance(config.get("include_headers"), list):
                    self.include_headers = Headers([tuple(h) for h in config.get("include_headers")])
                else:
                    raise TypeError("Not a list of 2-tuples")
            except (TypeError, ValueError) as ex:
                raise ConfigurationException("include_headers: must be either a dict or a list of "+
                                             "name-value pairs", cause=ex)
    @property
    def name(self):
        """
        a name for the service provided by this ServiceApp instance (set at construction time).
        """
        return self._name

    @abstractmethod
    def create_handler(self, env: dict, start_resp: Callable, path: str) -> Handler:
        """
        return a handler instance to handle a particular request to a path
        :param Mapping env:  the WSGI environment containing the request
        :param Callable start_resp:  the start_resp function to use initiate the response
        :param str path:     the path to the resource being requested, relative to the path
                             this ServiceApp is configured to handle.
        """
        raise NotImplementedError()

    def handle_path_request(self, env: dict, start_resp: Callable, path: str=None):
        """
        respond to a request on a particular (relative) URL path.
        """
        if path is None:
            path = env.get('PATH_INFO', '')
        return self.create_handler(env, start_resp, path).handle()

    def __call__(self, env, start_resp):
        return self.handle_path_request(env, start_resp)

class WSGIApp(metaclass=ABCMeta):
    """
    A WSGI application base class that serves requests whose paths fall under a base endpoint
    path.  Requests outside of the base path are passed to :py:meth:`handle_unmatched`.

    This base implementation will leverage two parameters from the configuration:

    ``base_ep``
        _str_.  The base endpoint URL for the web app given as a path starting with a forward
        slash, ``/``.
    ``name``
        _str_.  A short name to use to identify this web app (e.g. in log messages)
    """

    def __init__(self, config: Mapping, log: Logger, base_ep: str = None, name: str = None):
        """
        initialize the base information for the app.
        :param dict config:  configuration data for the app.
        :param Logger  log:  the Logger this app should use to record log messages
        :param str base_ep:  the base endpoint URL for the suite of services.  If not provided,
                             the base URL is set by the configuration (via the ``base_ep``
                             parameter).
        :param str    name:  a name to use to identify this app for context (e.g. in logs)
        """
        self.log = log
        self.cfg = config
        self.name = name
        if not self.name:
            self.name = self.cfg.get("name", "")
        self.base_ep = None
        if not base_ep:
            base_ep = self.cfg.get("base_ep", "")
        base_ep = base_ep.strip('/')
        if base_ep:
            self.base_ep = '/%s/' % base_ep

    def handle_request(self, env: Mapping, start_resp: Callable):
        path = re.sub(r'/+', '/', env.get('PATH_INFO', '/'))

        if self.base_ep:
            # the base itself may be requested without its trailing slash
            if not (path+'/').startswith(self.base_ep):
                return self.handle_unmatched(env, start_resp)
            path = path[len(self.base_ep)-1:]

        return self.handle_path_request(path.strip('/'), env, start_resp)

    def handle_unmatched(self, env: Mapping, start_resp: Callable):
        """
        respond to a request for a path that this app does not serve.  This implementation
        returns 404 Not Found.
        """
        return NotFoundHandler(env.get('PATH_INFO', ''), env, start_resp, log=self.log).handle()

    @abstractmethod
    def handle_path_request(self, path: str, env: Mapping, start_resp: Callable):
        """
        Dispatch a request on a resource path to a handler.
        :param str path:  the path requested by the client, relative to the base endpoint path
                          for the service; it will not start with a slash.
        :param dict env:  the WSGI environment containing all request information
        :param func start_resp:  the start-response function provided by the WSGI engine.
        """
        raise NotImplementedError()

    def __call__(self, env, start_resp):
        return self.handle_request(env, start_resp)
