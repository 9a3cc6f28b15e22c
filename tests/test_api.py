import asyncio
import time
import unittest

import httpx
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from api.main import create_app
from core.config import Settings
from core.context import build_context
from core.database import InMemoryGraphStore
from core.identity import stable_entity
from core.models import EntityType, TransformResult
from core.transform import FunctionTransform
from transforms.dns import DnsResolveTransform


class FakeResolver:
    async def resolve4(self, name):
        return {"example.com": ["93.184.216.34"]}.get(name, [])


DOMAIN_JSON = {"id": "domain-example.com", "type": "domain", "value": "example.com"}


async def _slow_lookup(entity, params):
    await asyncio.sleep(0.3)
    late = stable_entity(EntityType.TEXT, "late arrival")
    return TransformResult(success=True, entities=[late])


class TestApi(unittest.TestCase):

    def setUp(self):
        settings = Settings(SHODAN_API_KEY=None, NOTIFY_WEBHOOK_URL=None, EXECUTE_RESPONSE_TIMEOUT_SECONDS=0.1)
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        self.ctx = build_context(settings, transport=transport, store=InMemoryGraphStore())
        self.ctx.registry.register(DnsResolveTransform(FakeResolver()))
        self.ctx.registry.register(FunctionTransform("slow_lookup", "Slow Lookup", _slow_lookup, [EntityType.DOMAIN]))
        self.client = TestClient(create_app(context=self.ctx))
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)

    def test_health(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)

    def test_catalog_endpoints(self):
        transforms = self.client.get("/transforms/").json()
        dns = next(t for t in transforms if t["id"] == "dns_resolve")
        self.assertEqual(dns["provider"], "dns")
        self.assertEqual(dns["inputTypes"], ["domain"])
        self.assertIn("estimatedTime", dns)

        self.assertIn("DNS", self.client.get("/transforms/categories").json())
        in_dns = self.client.get("/transforms/category/DNS").json()
        self.assertEqual([t["id"] for t in in_dns], ["dns_resolve"])

        for_domain = {t["id"] for t in self.client.get("/transforms/for/domain").json()}
        self.assertIn("whois_lookup", for_domain)
        self.assertNotIn("geo_ip_location", for_domain)
        self.assertEqual(self.client.get("/transforms/for/spaceship").json(), [])

    def test_quota_endpoints(self):
        quotas = self.client.get("/transforms/quota").json()
        self.assertIn("oathnet", {q["provider"] for q in quotas})

        shodan = self.client.get("/transforms/quota/shodan").json()
        self.assertFalse(shodan["configured"])
        self.assertEqual(self.client.get("/transforms/quota/nowhere").status_code, 404)

    def test_execute_merges_into_graph(self):
        response = self.client.post("/transforms/execute", json={"transformId": "dns_resolve", "entity": DOMAIN_JSON})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["metadata"]["merged"]["entities_added"], 1)

        graph = self.client.get("/graph/").json()
        self.assertIn("ip-93.184.216.34", {e["id"] for e in graph["entities"]})
        self.assertEqual(self.client.get("/graph/entities/ip-93.184.216.34").status_code, 200)

    def test_execute_without_merge(self):
        self.client.post("/transforms/execute",
                         json={"transformId": "dns_resolve", "entity": DOMAIN_JSON, "merge": False})
        self.assertEqual(self.client.get("/graph/").json()["entities"], [])

    def test_failed_transform_is_still_200(self):
        unknown = self.client.post("/transforms/execute", json={"transformId": "nope", "entity": DOMAIN_JSON})
        upstream = self.client.post("/transforms/execute", json={
            "transformId": "geo_ip_location",
            "entity": {"id": "ip-93.184.216.34", "type": "ip_address", "value": "93.184.216.34"},
        })
        self.assertEqual(unknown.status_code, 200)
        self.assertEqual(unknown.json()["error"], "Transform nope not found")
        self.assertEqual(upstream.status_code, 200)
        self.assertFalse(upstream.json()["success"])

    def test_invalid_request_is_422(self):
        response = self.client.post("/transforms/execute",
                                    json={"transformId": "dns_resolve", "entity": {"id": "x", "type": "planet", "value": "mars"}})
        self.assertEqual(response.status_code, 422)

    def test_slow_execution_times_out_but_still_merges(self):
        response = self.client.post("/transforms/execute", json={"transformId": "slow_lookup", "entity": DOMAIN_JSON})
        self.assertEqual(response.status_code, 504)

        late_id = stable_entity(EntityType.TEXT, "late arrival").id
        for _ in range(30):
            if self.client.get(f"/graph/entities/{late_id}").status_code == 200:
                break
            time.sleep(0.1)
        self.assertEqual(self.client.get(f"/graph/entities/{late_id}").status_code, 200)

    def test_manual_graph_editing(self):
        self.assertEqual(self.client.get("/graph/entities/missing").status_code, 404)

        link = {"id": "link-domain-example.com-person-alice", "source": "domain-example.com",
                "target": "person-alice", "label": "owned by"}
        self.assertEqual(self.client.post("/graph/links", json=link).json()["dangling_links"], 1)
        self.client.post("/graph/entities", json=DOMAIN_JSON)
        self.assertEqual(self.client.get("/graph/", params={"visible_only": True}).json()["links"], [])

        report = self.client.post("/graph/merge", json={
            "entities": [{"id": "person-alice", "type": "person", "value": "Alice"}],
            "links": [link],
        }).json()
        self.assertEqual(report["entities_added"], 1)
        self.assertEqual(report["links_existing"], 1)
        self.assertEqual(len(self.client.get("/graph/", params={"visible_only": True}).json()["links"]), 1)


if __name__ == '__main__':
    unittest.main()
