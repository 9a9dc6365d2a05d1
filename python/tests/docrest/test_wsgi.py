import os, json, pdb, logging, tempfile
from collections import OrderedDict
from copy import deepcopy
from io import StringIO
import unittest as test

from bson import ObjectId

from docrest import wsgi, StoreError
from docrest.store.inmem import InMemoryDocumentStore

tmpdir = tempfile.TemporaryDirectory(prefix="_test_wsgi.")
loghdlr = None
rootlog = None
def setUpModule():
    global loghdlr
    global rootlog
    rootlog = logging.getLogger()
    rootlog.setLevel(logging.DEBUG)
    loghdlr = logging.FileHandler(os.path.join(tmpdir.name,"test_wsgi.log"))
    loghdlr.setLevel(logging.DEBUG)
    loghdlr.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    rootlog.addHandler(loghdlr)

def tearDownModule():
    global loghdlr
    if loghdlr:
        if rootlog:
            rootlog.removeHandler(loghdlr)
            loghdlr.flush()
            loghdlr.close()
        loghdlr = None
    tmpdir.cleanup()

widget_rsrc = {
    "name": "widgets",
    "id": "id",
    "schema": {
        "properties": {
            "_id":         {"type": "id"},
            "id":          {"type": "integer", "required": True},
            "name":        {"type": "string", "required": True},
            "description": {"type": "string", "required": True},
            "price":       {"type": "number", "required": True}
        }
    }
}

widgets = [{
    "id": 1,
    "name": "Widget #1",
    "description": "The first widget",
    "price": 0.99,
    "created": 100
}, {
    "id": 2,
    "name": "Widget #2",
    "description": "The second widget",
    "price": 1.99,
    "created": 200
}, {
    "id": 3,
    "name": "Widget #3",
    "description": "The third widget",
    "price": 2.99,
    "created": 300
}]

class FailingStore(InMemoryDocumentStore):

    def connect(self):
        raise StoreError("connection refused")

class AppTestCase(test.TestCase):

    def start(self, status, headers=None, extup=None):
        self.resp.append(status)
        for head in headers:
            self.resp.append("{0}: {1}".format(head[0], head[1]))

    def body2data(self, body):
        return json.loads("\n".join(self.tostr(body)), object_pairs_hook=OrderedDict)

    def tostr(self, resplist):
        return [e.decode() for e in resplist]

    def create_app(self, config=None, init=True, **rsrcparams):
        rsrc = deepcopy(widget_rsrc)
        rsrc.update(rsrcparams)
        cfg = {"name": "Widget API", "resources": [rsrc, "gadgets"]}
        if config:
            cfg.update(config)
        self.store = InMemoryDocumentStore(dbdata={"widgets": widgets})
        app = wsgi.DocRestApp(cfg, self.store)
        if init:
            app.init()
        return app

    def call(self, method, path, query=None, body=None):
        self.resp = []
        req = {"REQUEST_METHOD": method, "PATH_INFO": path}
        if query:
            req["QUERY_STRING"] = query
        if body is not None:
            if not isinstance(body, str):
                body = json.dumps(body)
            req["wsgi.input"] = StringIO(body)
        return self.app(req, self.start)

    def get(self, path, query=None):
        return self.body2data(self.call("GET", path, query))

class TestDocRestApp(AppTestCase):

    def setUp(self):
        self.resp = []
        self.app = self.create_app()

    def test_ctor(self):
        self.assertTrue(self.app.ready)
        self.assertEqual(self.app.name, "Widget API")
        self.assertIsNone(self.app.base_ep)
        self.assertEqual(list(self.app.services.keys()), ["widgets", "gadgets"])
        self.assertEqual(self.app.registry["widgets"].id, "id")

    def test_init(self):
        called = []
        app = self.create_app(init=False)
        self.assertFalse(app.ready)
        self.assertTrue(app.init(lambda: called.append(True)))
        self.assertTrue(app.ready)
        self.assertEqual(called, [True])

        app = wsgi.DocRestApp({"resources": ["widgets"]}, FailingStore())
        self.assertFalse(app.init(lambda: called.append(False)))
        self.assertFalse(app.ready)
        self.assertEqual(called, [True])

    def test_not_initialized(self):
        self.app = self.create_app(init=False)
        data = self.body2data(self.call("GET", "/widgets"))
        self.assertIn("503 ", self.resp[0])
        self.assertEqual(data, {"error": "Database failed to initialize"})

        data = self.body2data(self.call("POST", "/widgets", body={"id": 4}))
        self.assertIn("503 ", self.resp[0])

    def test_get_all(self):
        data = self.get("/widgets")
        self.assertIn("200 ", self.resp[0])
        self.assertIn("Content-Type: application/json", self.resp)
        self.assertIn("X-API-Powered-By: docrest", self.resp)
        self.assertEqual(list(data.keys()), ["count", "items", "cached", "elapsed"])
        self.assertEqual(data["count"], 3)
        self.assertEqual(len(data["items"]), 3)
        self.assertIs(data["cached"], False)
        self.assertTrue(isinstance(data["elapsed"], int))
        self.assertTrue(all(len(w["_id"]) == 24 for w in data["items"]))

        data = self.get("/widgets/")
        self.assertEqual(data["count"], 3)

    def test_get_one(self):
        data = self.get("/widgets/1")
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(data["count"], 1)
        self.assertEqual(data["items"][0]["id"], 1)
        self.assertEqual(data["items"][0]["name"], "Widget #1")

        data = self.get("/widgets/8")
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(data["count"], 0)
        self.assertEqual(data["items"], [])

    def test_get_by_store_key(self):
        key = self.get("/widgets/2")["items"][0]["_id"]
        data = self.get("/gadgets")
        self.assertEqual(data["count"], 0)

        self.store.insert_one("gadgets", {"_id": ObjectId(key), "name": "Gadget"})
        data = self.get("/gadgets/" + key)
        self.assertEqual(data["count"], 1)
        self.assertEqual(data["items"][0]["_id"], key)
        self.assertEqual(self.get("/gadgets/goober")["count"], 0)

    def test_sort(self):
        data = self.get("/widgets/", "sort=id:asc")
        self.assertEqual([w["id"] for w in data["items"]], [1, 2, 3])
        data = self.get("/widgets/", "sort=id:desc")
        self.assertEqual([w["id"] for w in data["items"]], [3, 2, 1])
        data = self.get("/widgets/", "sort=price:desc,id:sideways")
        self.assertEqual([w["id"] for w in data["items"]], [3, 2, 1])

    def test_default_sort_limit(self):
        self.app = self.create_app(sort={"id": "desc"}, limit=2)
        data = self.get("/widgets")
        self.assertEqual([w["id"] for w in data["items"]], [3, 2])
        data = self.get("/widgets", "limit=0")
        self.assertEqual(data["count"], 3)

    def test_fields(self):
        data = self.get("/widgets/1", "fields=id,name")
        self.assertEqual(data["count"], 1)
        self.assertEqual(dict(data["items"][0]), {"id": 1, "name": "Widget #1"})

        data = self.get("/widgets", "fields=id,_id")
        self.assertEqual(set(data["items"][0].keys()), set(["id", "_id"]))

        data = self.get("/widgets", "fields=_id")
        self.assertEqual(data["count"], 3)
        for item in data["items"]:
            self.assertEqual(list(item.keys()), ["_id"])

    def test_limit_offset(self):
        data = self.get("/widgets/", "limit=2")
        self.assertEqual(data["count"], 2)

        data = self.get("/widgets/", "offset=1")
        self.assertEqual(data["count"], 2)
        self.assertEqual(data["items"][0]["id"], 2)

        data = self.get("/widgets/", "offset=1&limit=1&sort=id:desc")
        self.assertEqual([w["id"] for w in data["items"]], [2])

        data = self.get("/widgets/", "offset=-4&limit=many")
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(data["count"], 3)

    def test_text_query(self):
        data = self.get("/widgets/", "q=first")
        self.assertEqual(data["count"], 1)
        self.assertEqual(data["items"][0]["description"], "The first widget")

        data = self.get("/widgets/", "q=fourth")
        self.assertEqual(data["count"], 0)

    def test_text_param(self):
        self.app = self.create_app({"queryParam": "search"})
        data = self.get("/widgets/", "search=second&q=first")
        self.assertEqual([w["id"] for w in data["items"]], [2])

    def test_positional(self):
        data = self.get("/widgets/_/description/The third widget")
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(data["count"], 1)
        self.assertEqual(data["items"][0]["description"], "The third widget")

        data = self.get("/widgets/_/name/widget #2")
        self.assertEqual([w["id"] for w in data["items"]], [2])

        data = self.get("/widgets/_/name/Widget #.*/id/3")
        self.assertEqual([w["id"] for w in data["items"]], [3])

        data = self.get("/widgets/_/name/Widget #.*", "q=first")
        self.assertEqual([w["id"] for w in data["items"]], [1])

        data = self.get("/widgets/_/description/The third")
        self.assertEqual(data["count"], 0)

    def test_positional_utf8(self):
        self.store.insert_one("widgets", {"id": 9, "name": "Widgét"})
        path = "/widgets/_/name/Widgét".encode("utf-8").decode("latin-1")
        data = self.get(path)
        self.assertEqual([w["id"] for w in data["items"]], [9])

    def test_store_failure(self):
        data = self.get("/widgets/_/name/Widget (#")
        self.assertIn("500 ", self.resp[0])
        self.assertIn("error", data)
        self.assertIn("Regular expression", data["error"])

    def test_head(self):
        body = self.call("HEAD", "/widgets")
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(body, [])
        self.assertTrue([h for h in self.resp if h.startswith("Content-Length: ")])

    def test_post(self):
        body = self.call("POST", "/widgets", body={
            "id": 4,
            "name": "Widget #4",
            "description": "The fourth widget",
            "price": 1.99
        })
        self.assertIn("201 ", self.resp[0])
        data = self.body2data(body)
        self.assertEqual(data["id"], 4)
        self.assertEqual(len(data["_id"]), 24)
        self.assertTrue(isinstance(data["created"], int))
        self.assertEqual(data["created"], data["modified"])

        data = self.get("/widgets")
        self.assertEqual(data["count"], 4)
        data = self.get("/widgets/4")
        self.assertEqual(data["items"][0]["description"], "The fourth widget")

    def test_post_invalid(self):
        body = self.call("POST", "/widgets", body={
            "id": "54a34",
            "name": "Widget #2",
            "description": "The second widget",
            "price": 1.99
        })
        self.assertIn("400 ", self.resp[0])
        data = self.body2data(body)
        self.assertEqual(data["error"]["property"], "id")

        body = self.call("POST", "/widgets", body={"id": 5, "description": "The fifth widget",
                                                   "price": 1.99})
        self.assertIn("400 ", self.resp[0])
        self.assertEqual(self.body2data(body)["error"],
                         {"property": "name", "message": "is required"})

        body = self.call("POST", "/widgets", body="{ id: 5,")
        self.assertIn("400 ", self.resp[0])
        self.assertIn("JSON", self.body2data(body)["error"])

        body = self.call("POST", "/widgets")
        self.assertIn("400 ", self.resp[0])

        body = self.call("POST", "/widgets", body=[1, 2])
        self.assertIn("400 ", self.resp[0])

        self.assertEqual(self.get("/widgets")["count"], 3)

    def test_post_with_id(self):
        body = self.call("POST", "/widgets/1", body={"id": 1, "name": "W", "description": "D",
                                                     "price": 1})
        self.assertIn("405 ", self.resp[0])
        self.assertEqual(self.get("/widgets")["count"], 3)

    def test_post_no_schema(self):
        body = self.call("POST", "/gadgets", body={"name": "Gadget", "owner": "me"})
        self.assertIn("201 ", self.resp[0])
        data = self.get("/gadgets")
        self.assertEqual(data["count"], 1)
        self.assertEqual(data["items"][0]["owner"], "me")

    def test_post_store_key_no_schema(self):
        oid = "5f0c3a9b2c1d4e5f6a7b8c9d"
        self.call("POST", "/gadgets", body={"_id": oid, "name": "Gadget"})
        self.assertIn("201 ", self.resp[0])
        self.assertIsInstance(self.store.find_one("gadgets", {})["_id"], ObjectId)

        data = self.get("/gadgets/" + oid)
        self.assertEqual(data["count"], 1)
        self.assertEqual(data["items"][0]["_id"], oid)

        data = self.get("/gadgets/_/_id/" + oid)
        self.assertEqual(data["count"], 1)

        self.call("PUT", "/gadgets/" + oid, body={"_id": oid, "name": "Gizmo"})
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(self.get("/gadgets/" + oid)["items"][0]["name"], "Gizmo")

        data = self.body2data(self.call("DELETE", "/gadgets/" + oid))
        self.assertEqual(data["result"], {"n": 1})

    def test_put(self):
        body = self.call("PUT", "/widgets/2", body={
            "id": 2,
            "name": "Widget #2",
            "description": "The second (modified) widget",
            "price": 1.99
        })
        self.assertIn("200 ", self.resp[0])
        data = self.body2data(body)
        self.assertEqual(data["description"], "The second (modified) widget")
        self.assertEqual(data["created"], 200)
        self.assertGreater(data["modified"], 200)

        data = self.get("/widgets/2")
        self.assertEqual(data["items"][0]["description"], "The second (modified) widget")
        self.assertEqual(data["items"][0]["created"], 200)
        self.assertEqual(self.get("/widgets")["count"], 3)

    def test_put_idempotent(self):
        doc = {"id": 2, "name": "Widget Two", "description": "Two", "price": 2.5}
        self.call("PUT", "/widgets/2", body=doc)
        first = self.get("/widgets/2")["items"][0]
        self.call("PUT", "/widgets/2", body=doc)
        self.assertIn("200 ", self.resp[0])
        second = self.get("/widgets/2")["items"][0]

        self.assertEqual(first["_id"], second["_id"])
        for prop in "id name description price created".split():
            self.assertEqual(first[prop], second[prop])
        self.assertEqual(self.get("/widgets")["count"], 3)

    def test_put_missing(self):
        body = self.call("PUT", "/widgets/5", body={
            "id": 5,
            "name": "Widget #5",
            "description": "The fifth widget",
            "price": 3.99
        })
        self.assertIn("404 ", self.resp[0])
        self.assertIn("error", self.body2data(body))
        self.assertEqual(self.get("/widgets")["count"], 3)

    def test_put_invalid(self):
        body = self.call("PUT", "/widgets/2", body={"id": "2", "name": 1234,
                                                    "description": "The second widget", "price": 1.99})
        self.assertIn("400 ", self.resp[0])
        self.assertEqual(self.get("/widgets/2")["items"][0]["name"], "Widget #2")

    def test_put_collection(self):
        body = self.call("PUT", "/widgets", body={"id": 2, "name": "W", "description": "D", "price": 1})
        self.assertIn("405 ", self.resp[0])

    def test_delete(self):
        body = self.call("DELETE", "/widgets/3")
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(self.body2data(body), {"success": True, "result": {"n": 1}})

        data = self.get("/widgets/3")
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(data["count"], 0)

        body = self.call("DELETE", "/widgets/3")
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(self.body2data(body), {"success": False, "result": {"n": 0}})

    def test_delete_collection(self):
        body = self.call("DELETE", "/widgets/")
        self.assertIn("405 ", self.resp[0])
        self.assertIn("error", self.body2data(body))
        self.assertEqual(self.get("/widgets/")["count"], 3)

        body = self.call("DELETE", "/widgets/_/name/Widget #1")
        self.assertIn("405 ", self.resp[0])
        self.assertEqual(self.get("/widgets/")["count"], 3)

    def test_disabled_verbs(self):
        self.app = self.create_app(verbs=["read", "readOne"])
        self.call("GET", "/widgets/1")
        self.assertIn("200 ", self.resp[0])
        self.call("POST", "/widgets", body={"id": 4, "name": "W", "description": "D", "price": 1})
        self.assertIn("405 ", self.resp[0])
        self.call("DELETE", "/widgets/1")
        self.assertIn("405 ", self.resp[0])
        self.assertEqual(self.get("/widgets/")["count"], 3)

        self.app = self.create_app(get=False)
        self.call("GET", "/widgets/1")
        self.assertIn("405 ", self.resp[0])
        self.call("GET", "/widgets")
        self.assertIn("405 ", self.resp[0])

    def test_unsupported_method(self):
        data = self.body2data(self.call("PATCH", "/widgets/1", body={"name": "W"}))
        self.assertIn("405 ", self.resp[0])
        self.assertIn("Content-Type: application/json", self.resp)
        self.assertEqual(data, {"error": "PATCH not supported on this resource"})
        self.assertIn("Access-Control-Allow-Origin: *", self.resp)

    def test_unexpected_failure(self):
        def fail(*args):
            raise TypeError("unexpected input")
        self.app.crud.find_items = fail

        data = self.body2data(self.call("GET", "/widgets"))
        self.assertIn("500 ", self.resp[0])
        self.assertEqual(data, {"error": "Server failure"})

    def test_unmatched(self):
        data = self.body2data(self.call("GET", "/gizmos"))
        self.assertIn("404 ", self.resp[0])
        self.assertEqual(data, {"error": "Unsupported URI"})

        data = self.body2data(self.call("GET", "/widgets/1/parts"))
        self.assertIn("404 ", self.resp[0])

        data = self.body2data(self.call("POST", "/"))
        self.assertIn("404 ", self.resp[0])

    def test_fallback(self):
        def fallback(env, start_resp):
            start_resp("418 I'm a teapot", [("Content-Type", "text/plain")])
            return [b"teapot"]

        self.app = wsgi.DocRestApp({"resources": ["widgets"], "version": "v2"},
                                   InMemoryDocumentStore(dbdata={"widgets": widgets}), fallback)
        self.app.init()
        body = self.call("GET", "/static/index.html")
        self.assertEqual(self.resp[0], "418 I'm a teapot")
        self.assertEqual(body, [b"teapot"])

        body = self.call("GET", "/v2/gizmos")
        self.assertEqual(self.resp[0], "418 I'm a teapot")

        data = self.get("/v2/widgets")
        self.assertEqual(data["count"], 3)

    def test_index(self):
        data = self.get("/")
        self.assertIn("200 ", self.resp[0])
        self.assertEqual(data["name"], "Widget API")
        self.assertEqual(data["base"], "/")
        self.assertEqual([r["name"] for r in data["resources"]], ["widgets", "gadgets"])
        self.assertEqual(data["resources"][0]["url"], "/widgets")
        self.assertEqual(data["resources"][1]["verbs"],
                         ["create", "delete", "read", "readOne", "update"])
        self.assertIn("properties", data["resources"][0]["schema"])
        self.assertIsNone(data["resources"][1]["schema"])

    def test_version(self):
        self.app = self.create_app({"version": "v1", "base": "/api/"})
        self.assertEqual(self.app.base_ep, "/v1/")

        data = self.get("/v1/widgets/2")
        self.assertEqual(data["items"][0]["id"], 2)

        self.call("GET", "/widgets/2")
        self.assertIn("404 ", self.resp[0])
        self.call("GET", "/api/widgets/2")
        self.assertIn("404 ", self.resp[0])

        data = self.get("/v1/")
        self.assertEqual(data["version"], "v1")
        self.assertEqual(data["resources"][0]["url"], "/v1/widgets")

    def test_base(self):
        self.app = self.create_app({"base": "/api"})
        self.assertEqual(self.get("/api/widgets")["count"], 3)
        self.call("GET", "/widgets")
        self.assertIn("404 ", self.resp[0])

    def test_global_cors(self):
        self.call("GET", "/widgets")
        self.assertIn("Access-Control-Allow-Origin: *", self.resp)
        self.assertIn("Access-Control-Allow-Headers: Origin, X-Requested-With, Content-Type, Accept",
                      self.resp)
        self.assertIn("Access-Control-Allow-Methods: OPTIONS, GET, POST, PUT, DELETE, HEAD", self.resp)

        self.call("DELETE", "/widgets/3")
        self.assertIn("Access-Control-Allow-Methods: OPTIONS, GET, POST, PUT, DELETE, HEAD", self.resp)

        self.app = self.create_app({"crossDomainAllowOrigin": "https://example.com"})
        self.call("GET", "/widgets")
        self.assertIn("Access-Control-Allow-Origin: https://example.com", self.resp)

        self.app = self.create_app({"crossDomain": False})
        self.call("GET", "/widgets")
        self.assertFalse([h for h in self.resp if h.startswith("Access-Control-")])

    def test_resource_cors(self):
        self.app = self.create_app({"crossDomain": False}, crossDomain=True,
                                   crossDomainAllowOrigin="https://example.com")
        self.call("GET", "/widgets")
        self.assertIn("Access-Control-Allow-Origin: https://example.com", self.resp)
        self.assertIn("Access-Control-Allow-Methods: OPTIONS, GET, HEAD", self.resp)

        self.call("POST", "/widgets", body={"id": 4, "name": "W", "description": "D", "price": 1})
        self.assertIn("Access-Control-Allow-Methods: OPTIONS, POST, HEAD", self.resp)
        self.call("PUT", "/widgets/4", body={"id": 4, "name": "W", "description": "D", "price": 1})
        self.assertIn("Access-Control-Allow-Methods: OPTIONS, PUT, HEAD", self.resp)
        self.call("DELETE", "/widgets/4")
        self.assertIn("Access-Control-Allow-Methods: OPTIONS, DELETE, HEAD", self.resp)

        # the other resource still follows the global policy
        self.call("GET", "/gadgets")
        self.assertFalse([h for h in self.resp if h.startswith("Access-Control-")])

        # a resource can opt out of the global policy
        self.app = self.create_app(crossDomain=False)
        self.call("GET", "/widgets")
        self.assertFalse([h for h in self.resp if h.startswith("Access-Control-")])
        self.call("GET", "/gadgets")
        self.assertIn("Access-Control-Allow-Origin: *", self.resp)

    def test_options(self):
        body = self.call("OPTIONS", "/widgets")
        self.assertIn("204 ", self.resp[0])
        self.assertIn("Allow: GET, POST, PUT, DELETE, HEAD, OPTIONS", self.resp)
        self.assertIn("Access-Control-Allow-Methods: OPTIONS, GET, POST, PUT, DELETE, HEAD", self.resp)

        self.app = self.create_app({"crossDomain": False}, crossDomain=True, verbs=["read", "create"])
        self.call("OPTIONS", "/widgets")
        self.assertIn("204 ", self.resp[0])
        self.assertIn("Allow: GET, POST, HEAD, OPTIONS", self.resp)
        self.assertIn("Access-Control-Allow-Methods: OPTIONS, GET, POST, HEAD", self.resp)

    def test_cache_control(self):
        self.call("GET", "/widgets")
        self.assertFalse([h for h in self.resp if h.startswith("Cache-Control")])

        self.app = self.create_app({"maxAge": 30}, maxAge=60)
        self.call("GET", "/widgets")
        self.assertIn("Cache-Control: max-age=60", self.resp)
        self.call("GET", "/gadgets")
        self.assertIn("Cache-Control: max-age=30", self.resp)
        self.call("POST", "/gadgets", body={"name": "Gadget"})
        self.assertFalse([h for h in self.resp if h.startswith("Cache-Control")])

    def test_jsonp(self):
        body = self.call("GET", "/widgets/1", "callback=showWidget")
        self.assertIn("Content-Type: application/javascript", self.resp)
        content = self.tostr(body)[0]
        self.assertTrue(content.startswith("/**/ typeof showWidget === 'function' && showWidget("))
        self.assertTrue(content.endswith(");"))

        body = self.call("GET", "/widgets/1", "callback=alert(1)")
        self.assertIn("Content-Type: application/json", self.resp)

        self.app = self.create_app({"jsonp": False})
        body = self.call("GET", "/widgets/1", "callback=showWidget")
        self.assertIn("Content-Type: application/json", self.resp)
        self.assertEqual(self.body2data(body)["count"], 1)


class TestParseResourcePath(test.TestCase):

    def test_parse(self):
        self.assertEqual(wsgi.parse_resource_path(""), (None, []))
        self.assertEqual(wsgi.parse_resource_path("3"), ("3", []))
        self.assertEqual(wsgi.parse_resource_path("_"), (None, []))
        self.assertEqual(wsgi.parse_resource_path("_/name/W"), (None, ["name", "W"]))
        self.assertIsNone(wsgi.parse_resource_path("3/parts"))


if __name__ == '__main__':
    test.main()
