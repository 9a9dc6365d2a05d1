"""
The WSGI web application that serves a docrest API.

:py:class:`DocRestApp` answers requests under the configured base path.  The first path segment
after the base selects a resource from the registry; the request is then handed to that resource's
:py:class:`ResourceApp`, which creates a :py:class:`ResourceHandler` to carry it through the
pipeline:  the query compiler (reads) or the payload normalizer (writes), the CRUD executor, and
finally the response envelope builder.  Each resource supports the following URLs::

    GET    {base}/{R}                     list documents (query parameters: fields, sort,
                                          limit, offset, q)
    GET    {base}/{R}/_/{field}/{value}   list documents by field values (any number of pairs)
    GET    {base}/{R}/{id}                get one document
    POST   {base}/{R}                     create a document
    PUT    {base}/{R}/{id}                replace a document
    DELETE {base}/{R}/{id}                delete a document

Requests for paths that do not match a resource are passed to a fallback WSGI application.
"""
import json, logging, time
from collections import OrderedDict, namedtuple
from collections.abc import Mapping, Callable
from typing import List

from . import (SYSTEM_NAME, InitializationError, ValidationError, StoreError, ObjectNotFound)
from .config import DEFAULTS, merge_config
from .resources import ResourceRegistry, ResourceDefinition, READ, READ_ONE, CREATE, UPDATE, DELETE
from .query import QueryCompiler
from .payload import PayloadNormalizer
from .crud import CRUDExecutor
from .envelope import read_envelope, delete_envelope, error_body, render, DocumentEncoder
from .store import DocumentStore, create_store
from .web.rest import Handler, ServiceApp, WSGIApp, FatalError

deflog = logging.getLogger(SYSTEM_NAME).getChild("wsgi")

POSITIONAL_MARKER = "_"
CORS_ALLOW_HEADERS = "Origin, X-Requested-With, Content-Type, Accept"
GLOBAL_CORS_METHODS = "OPTIONS, GET, POST, PUT, DELETE, HEAD"

_method_verbs = OrderedDict([
    ("GET",    (READ, READ_ONE)),
    ("POST",   (CREATE,)),
    ("PUT",    (UPDATE,)),
    ("DELETE", (DELETE,))
])

RequestContext = namedtuple("RequestContext", "resource method path id tokens params started")
ResponseIntent = namedtuple("ResponseIntent", "code reason body headers")

def parse_resource_path(path: str):
    """
    split the part of a request path that follows a resource's name into an identifier and a
    list of positional filter tokens.
    :return:  a 2-tuple, (id, tokens), where id is None for a list request, or None if the path
              does not have a recognized form
    """
    parts = path.split('/') if path else []
    if not parts:
        return (None, [])
    if parts[0] == POSITIONAL_MARKER:
        return (None, parts[1:])
    if len(parts) == 1:
        return (parts[0], [])
    return None

def _decode_path(path: str) -> str:
    # WSGI delivers the path as bytes decoded as latin-1
    try:
        return path.encode("latin-1").decode("utf-8")
    except UnicodeError:
        return path

class ResourceHandler(Handler):
    """
    the handler for a request on a resource.  The do_METH methods build a
    :py:class:`RequestContext`, run it through a pipeline stage which produces a
    :py:class:`ResponseIntent`, and send that intent to the client.
    """
    json_encoder = DocumentEncoder

    def __init__(self, resource: ResourceDefinition, crud: CRUDExecutor, path: str, wsgienv: Mapping,
                 start_resp: Callable, config: Mapping={}, log: logging.Logger=None, app=None):
        if not log:
            log = deflog
        super(ResourceHandler, self).__init__(path, wsgienv, start_resp, config, log, app)
        self.resource = resource
        self.crud = crud
        self._started = time.monotonic()

    def context(self, method: str) -> RequestContext:
        """
        capture the state of the current request
        """
        id, tokens = parse_resource_path(self._path) or (None, [])
        return RequestContext(self.resource, method, self._path, id, tokens, self.get_query_params(),
                              self._started)

    def handle(self):
        if not self.crud.store.ready:
            self.log.warning("%s: request rejected: document store is not initialized",
                             self.resource.name)
            return self.send_intent(self.error_intent(503, "Service Unavailable", InitializationError()))
        return super(ResourceHandler, self).handle()

    def do_GET(self, path, ashead=False):
        return self.run(self.read, self.context("GET"), ashead)

    def do_POST(self, path):
        return self.run(self.create, self.context("POST"))

    def do_PUT(self, path):
        return self.run(self.update, self.context("PUT"))

    def do_DELETE(self, path):
        return self.run(self.delete, self.context("DELETE"))

    def do_OPTIONS(self, path):
        ctx = self.context("OPTIONS")
        for name, val in self.cors_headers(ctx):
            self.add_header(name, val)
        return self.send_options(self.allowed_methods())

    def run(self, stage: Callable, ctx: RequestContext, ashead=None):
        """
        execute a pipeline stage for the given request and send its result.  Failures raised by
        the stage are converted to error responses here.
        """
        try:
            intent = stage(ctx)

        except FatalError as ex:
            intent = ResponseIntent(ex.code, ex.reason, ex.to_message(), [])
        except ValidationError as ex:
            intent = self.error_intent(400, "Bad Request", ex)
        except ObjectNotFound as ex:
            intent = self.error_intent(404, "Not Found", ex)
        except InitializationError as ex:
            intent = self.error_intent(503, "Service Unavailable", ex)
        except StoreError as ex:
            self.log.error("%s %s: %s", ctx.method, self.resource.name, str(ex))
            intent = self.error_intent(500, "Internal Server Error", ex)

        headers = list(self.cors_headers(ctx)) + list(intent.headers)
        return self.send_intent(intent._replace(headers=headers), ashead)

    def error_intent(self, code: int, reason: str, err) -> ResponseIntent:
        return ResponseIntent(code, reason, error_body(err), [])

    def send_error_obj(self, code: int, reason: str, explain=None, ashead=None):
        intent = self.error_intent(code, reason, explain or reason)
        headers = list(self.cors_headers(self.context(self._meth)))
        return self.send_intent(intent._replace(headers=headers), ashead)

    def send_intent(self, intent: ResponseIntent, ashead=None):
        """
        send the response described by the given intent
        """
        for name, val in intent.headers:
            self.add_header(name, val)
        if intent.body is None:
            return self.send_ok(message=intent.reason, code=intent.code, ashead=ashead)

        callback = None
        if self.cfg.get("jsonp"):
            callback = self.get_query_params().get("callback")
        content, ctype = render(intent.body, callback)
        return self._send(intent.code, intent.reason, content, ctype, ashead, "utf-8")

    def allowed_methods(self) -> List[str]:
        """
        return the HTTP methods enabled for the resource
        """
        out = [m for m, verbs in _method_verbs.items() if any(v in self.resource.verbs for v in verbs)]
        if "GET" in out:
            out.append("HEAD")
        return out

    def cors_headers(self, ctx: RequestContext):
        """
        return the cross-origin headers that apply to the request.  A resource's own policy, when
        it has one, takes precedence over the global one; only the global policy grants all
        methods at once.
        """
        if self.resource.cross_domain is not None:
            if not self.resource.cross_domain:
                return []
            if ctx.method == "OPTIONS":
                methods = ", ".join(["OPTIONS"] + self.allowed_methods())
            else:
                methods = "OPTIONS, %s, HEAD" % ("GET" if ctx.method == "HEAD" else ctx.method)
            origin = self.resource.cross_domain_allow_origin
        elif self.cfg.get("crossDomain"):
            methods = GLOBAL_CORS_METHODS
            origin = self.cfg.get("crossDomainAllowOrigin")
        else:
            return []

        return [("Access-Control-Allow-Origin", origin or "*"),
                ("Access-Control-Allow-Headers", CORS_ALLOW_HEADERS),
                ("Access-Control-Allow-Methods", methods)]

    def cache_headers(self) -> list:
        maxage = self.resource.max_age
        if maxage is None:
            maxage = self.cfg.get("maxAge")
        if maxage:
            return [("Cache-Control", "max-age=%s" % maxage)]
        return []

    def require(self, verb: str):
        if verb not in self.resource.verbs:
            raise FatalError(405, "Method Not Allowed",
                             "%s not enabled on resource %s" % (verb, self.resource.name))

    def get_json_body(self):
        """
        read in the request body assuming that it is in JSON format
        """
        try:
            bodyin = self._env.get('wsgi.input')
            if bodyin is None:
                raise FatalError(400, "Bad Request", "Missing expected input JSON data")

            if self.log.isEnabledFor(logging.DEBUG):
                body = bodyin.read()
                self.log.debug("%s: input: %s", self.resource.name, body)
                return json.loads(body, object_pairs_hook=OrderedDict)
            return json.load(bodyin, object_pairs_hook=OrderedDict)

        except (ValueError, TypeError) as ex:
            self.log.debug("%s: failed to parse input: %s", self.resource.name, str(ex))
            raise FatalError(400, "Bad Request", "Input document is not parse-able as JSON: "+str(ex))

    def _compiler(self) -> QueryCompiler:
        return QueryCompiler(self.resource, self.cfg.get("queryParam"))

    def read(self, ctx: RequestContext) -> ResponseIntent:
        """
        list documents or get one by its identifier
        """
        self.require(READ_ONE if ctx.id is not None else READ)
        plan = self._compiler().compile(ctx.params, ctx.tokens, ctx.id)
        if ctx.id is not None:
            result = self.crud.find_item(self.resource.name, plan.filter, plan.projection)
        else:
            result = self.crud.find_items(self.resource.name, plan)
        return ResponseIntent(200, "OK", read_envelope(result, ctx.started), self.cache_headers())

    def create(self, ctx: RequestContext) -> ResponseIntent:
        """
        add a new document
        """
        if ctx.id is not None or ctx.tokens:
            raise FatalError(405, "Method Not Allowed", "POST not allowed on an existing document")
        self.require(CREATE)

        doc = PayloadNormalizer(self.resource).normalize(self.get_json_body())
        doc = self.crud.add_item(self.resource.name, doc)
        self.log.info("%s: added document %s", self.resource.name, str(doc.get("_id")))
        return ResponseIntent(201, "Created", doc, [])

    def update(self, ctx: RequestContext) -> ResponseIntent:
        """
        replace an existing document
        """
        if ctx.id is None:
            raise FatalError(405, "Method Not Allowed", "PUT requires a document identifier")
        self.require(UPDATE)

        doc = PayloadNormalizer(self.resource).normalize(self.get_json_body())
        doc = self.crud.update_item(self.resource.name, self._compiler().id_filter(ctx.id), doc)
        self.log.info("%s: updated document %s", self.resource.name, ctx.id)
        return ResponseIntent(200, "OK", doc, [])

    def delete(self, ctx: RequestContext) -> ResponseIntent:
        """
        delete a document
        """
        if ctx.id is None:
            raise FatalError(405, "Method Not Allowed", "DELETE requires a document identifier")
        self.require(DELETE)

        n = self.crud.delete_item(self.resource.name, self._compiler().id_filter(ctx.id))
        self.log.info("%s: deleted %d document(s) with id=%s", self.resource.name, n, ctx.id)
        return ResponseIntent(200, "OK", delete_envelope(n), [])

class ResourceApp(ServiceApp):
    """
    the service for a single resource
    """

    def __init__(self, resource: ResourceDefinition, crud: CRUDExecutor, log: logging.Logger,
                 config: Mapping=None):
        super(ResourceApp, self).__init__(resource.name, log, config)
        self.resource = resource
        self.crud = crud

    def accepts(self, path: str) -> bool:
        """
        return True if the given path (relative to the resource) has a form this service serves
        """
        return parse_resource_path(path) is not None

    def create_handler(self, env: Mapping, start_resp: Callable, path: str) -> Handler:
        return ResourceHandler(self.resource, self.crud, path, env, start_resp, self.cfg, self.log, self)

class IndexHandler(Handler):
    """
    the handler for the API's base path, which describes the resources it serves
    """
    json_encoder = DocumentEncoder

    def do_GET(self, path, ashead=False):
        return self.send_json(self.app.describe(), ashead=ashead)

class _IndexApp(ServiceApp):

    def __init__(self, docapp, log: logging.Logger, config: Mapping=None):
        super(_IndexApp, self).__init__("index", log, config)
        self.docapp = docapp

    def describe(self):
        return self.docapp.describe()

    def create_handler(self, env: Mapping, start_resp: Callable, path: str) -> Handler:
        return IndexHandler(path, env, start_resp, self.cfg, self.log, self)

class DocRestApp(WSGIApp):
    """
    the WSGI application serving a docrest API.  Call :py:meth:`init` to connect to the document
    store before serving requests; until it succeeds, resource requests are answered with
    503 Service Unavailable.
    """

    def __init__(self, config: Mapping, store: DocumentStore=None, fallback: Callable=None,
                 log: logging.Logger=None):
        """
        :param dict       config:  the API configuration; it is merged over the defaults
        :param DocumentStore store:  the store to serve documents from; if not provided, one
                                   will be created from the ``database`` configuration.
        :param Callable fallback:  a WSGI application to pass requests to that do not match
                                   any resource; if not provided, they get 404 Not Found.
        """
        config = merge_config(config or {}, DEFAULTS)
        base = config.get("base") or "/"
        if config.get("version"):
            base = "/%s/" % str(config["version"]).strip('/')
        if not log:
            log = deflog
        super(DocRestApp, self).__init__(config, log, base, config.get("name"))

        if store is None:
            store = create_store(config.get("database", {}))
        self.store = store
        self.fallback = fallback
        self.crud = CRUDExecutor(store, log.getChild("crud"))
        self.registry = ResourceRegistry(config.get("resources"))
        self.services = OrderedDict(
            (name, ResourceApp(rsrc, self.crud, log.getChild(name), config))
            for name, rsrc in self.registry.items()
        )
        self.index = _IndexApp(self, log, config)

    @property
    def ready(self) -> bool:
        """
        True if the document store has been successfully initialized
        """
        return self.store.ready

    def init(self, callback: Callable=None) -> bool:
        """
        connect to the document store.  This should be called once before serving requests.
        :param callback:  a function (taking no arguments) to call once the store is ready
        :return:  True if the store was successfully initialized
        """
        if not self.store.ready:
            try:
                self.store.connect()
            except (StoreError, InitializationError) as ex:
                self.log.error("Database failed to initialize: %s", str(ex))
                return False

        self.log.info("%s up and running at %s (%d resources)", self.name, self.base_ep or '/',
                      len(self.registry))
        if callback:
            callback()
        return True

    def describe(self) -> Mapping:
        """
        return a description of the API and the resources it serves
        """
        base = self.base_ep or '/'
        rsrcs = []
        for name, rsrc in self.registry.items():
            rsrcs.append(OrderedDict([
                ("name", name),
                ("url", base + name),
                ("verbs", sorted(rsrc.verbs)),
                ("schema", rsrc.schema)
            ]))
        return OrderedDict([("name", self.name), ("version", self.cfg.get("version") or ""),
                            ("base", base), ("resources", rsrcs)])

    def handle_path_request(self, path: str, env: Mapping, start_resp: Callable):
        path = _decode_path(path)
        if not path:
            if env.get('REQUEST_METHOD', 'GET') in ("GET", "HEAD"):
                return self.index.handle_path_request(env, start_resp, path)
            return self.handle_unmatched(env, start_resp)

        parts = path.split('/', 1)
        svc = self.services.get(parts[0])
        subpath = parts[1] if len(parts) > 1 else ''
        if not svc or not svc.accepts(subpath):
            return self.handle_unmatched(env, start_resp)

        return svc.handle_path_request(env, start_resp, subpath)

    def handle_unmatched(self, env: Mapping, start_resp: Callable):
        if self.fallback:
            return self.fallback(env, start_resp)
        return super(DocRestApp, self).handle_unmatched(env, start_resp)

def create_app(config: Mapping, store: DocumentStore=None, fallback: Callable=None) -> DocRestApp:
    """
    create and initialize a :py:class:`DocRestApp` from a configuration
    """
    out = DocRestApp(config, store, fallback)
    out.init()
    return out
