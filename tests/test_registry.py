import unittest

import sys
import os
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.config import Settings
from core.errors import InvalidTransformError
from core.models import EntityType, TransformResult
from core.registry import TransformRegistry
from core.transform import FunctionTransform, Transform
from transforms.catalog import register_default_transforms


def _noop(entity, params):
    return TransformResult(success=True)


class TestTransformRegistry(unittest.TestCase):

    def setUp(self):
        self.registry = TransformRegistry()
        self.dns = FunctionTransform("dns_resolve", "Domain to IP", _noop, [EntityType.DOMAIN],
                                     [EntityType.IP_ADDRESS], category="DNS")
        self.geo = FunctionTransform("geo_ip_location", "IP Geolocation", _noop, ["ip_address"],
                                     ["location"], category="Geolocation")
        self.registry.register(self.dns)
        self.registry.register(self.geo)

    def test_get_and_contains(self):
        self.assertIs(self.registry.get("dns_resolve"), self.dns)
        self.assertIsNone(self.registry.get("nope"))
        self.assertIn("geo_ip_location", self.registry)
        self.assertEqual(len(self.registry), 2)

    def test_queries_by_category_and_input_type(self):
        self.assertEqual(self.registry.by_category("DNS"), [self.dns])
        self.assertEqual(self.registry.by_category("Missing"), [])
        self.assertEqual(self.registry.by_input_type(EntityType.IP_ADDRESS), [self.geo])
        self.assertEqual(self.registry.by_input_type("domain"), [self.dns])
        self.assertEqual(self.registry.by_input_type("not_a_type"), [])
        self.assertEqual(self.registry.categories(), ["DNS", "Geolocation"])

    def test_last_registration_wins(self):
        replacement = FunctionTransform("dns_resolve", "Domain to IP v2", _noop, [EntityType.DOMAIN])
        self.registry.register(replacement)
        self.assertIs(self.registry.get("dns_resolve"), replacement)
        self.assertEqual(len(self.registry), 2)

    def test_rejects_unknown_entity_type_names(self):
        with self.assertRaises(InvalidTransformError):
            FunctionTransform("bad", "Bad", _noop, ["domain", "starship"])

    def test_rejects_transform_without_inputs(self):
        with self.assertRaises(InvalidTransformError):
            self.registry.register(FunctionTransform("empty", "Empty", _noop, []))

    def test_rejects_non_transform_and_unnamed(self):
        with self.assertRaises(InvalidTransformError):
            self.registry.register(object())
        with self.assertRaises(InvalidTransformError):
            self.registry.register(FunctionTransform("", "No id", _noop, [EntityType.DOMAIN]))

    def test_rejects_mutable_type_declarations(self):
        class Sloppy(Transform):
            id = "sloppy"
            name = "Sloppy"
            input_types = {EntityType.DOMAIN}

            async def execute(self, entity, params):
                return TransformResult(success=True)

        with self.assertRaises(InvalidTransformError):
            self.registry.register(Sloppy())

    def test_describe_uses_catalog_keys(self):
        description = self.dns.describe()
        self.assertEqual(description["inputTypes"], ["domain"])
        self.assertEqual(description["outputTypes"], ["ip_address"])
        self.assertFalse(description["requiresApiKey"])


class TestDefaultCatalog(unittest.TestCase):

    def test_registers_every_builtin_transform(self):
        registry = register_default_transforms(TransformRegistry(), Settings())
        expected = {
            "dns_resolve", "subdomain_enumeration", "cert_transparency", "whois_lookup",
            "geo_ip_location", "shodan_lookup", "hibp_breach_check", "oathnet_breach_check",
            "oathnet_discord_lookup", "tech_stack_detection",
            "username_search", "nmap_quick_scan", "nmap_full_scan",
        }
        self.assertEqual({t.id for t in registry.all()}, expected)
        self.assertIn("Network Intelligence", registry.categories())
        domain_ids = {t.id for t in registry.by_input_type(EntityType.DOMAIN)}
        self.assertIn("dns_resolve", domain_ids)
        self.assertNotIn("shodan_lookup", domain_ids)
        self.assertTrue(registry.get("shodan_lookup").requires_api_key)
        discord_ids = {t.id for t in registry.by_input_type(EntityType.DISCORD_ID)}
        self.assertEqual(discord_ids, {"oathnet_discord_lookup"})
        self.assertIn("tech_stack_detection", {t.id for t in registry.by_input_type(EntityType.URL)})


if __name__ == '__main__':
    unittest.main()
