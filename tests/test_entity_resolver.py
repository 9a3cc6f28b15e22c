import unittest

# Adjust the path to import from the parent directory's 'core' module
import sys
import os
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.database import fold_entity
from core.entity_resolver import EntityResolver
from core.identity import make_link, stable_entity
from core.models import EntityType, Link


class TestEntityResolver(unittest.TestCase):

    def setUp(self):
        self.resolver = EntityResolver()

    def test_collapses_repeated_entities_within_a_batch(self):
        """
        Subdomain enumeration can discover the same IP behind several names;
        the batch must carry it once, with the facts of every sighting.
        """
        # --- Arrange ---
        first = stable_entity(EntityType.IP_ADDRESS, "93.184.216.34", properties={"source": "DNS"})
        second = stable_entity(EntityType.IP_ADDRESS, "93.184.216.34", properties={"asn": "AS15133"})
        domain = stable_entity(EntityType.DOMAIN, "www.example.com")
        links = [
            make_link(domain.id, first.id, "resolves to"),
            make_link(domain.id, second.id, "resolves to"),
        ]

        # --- Act ---
        entities, kept_links = self.resolver.resolve([first, domain, second], links)

        # --- Assert ---
        self.assertEqual([e.id for e in entities], ["ip-93.184.216.34", "domain-www.example.com"])
        self.assertEqual(entities[0].properties, {"source": "DNS", "asn": "AS15133"})
        self.assertEqual(len(kept_links), 1)

    def test_drops_self_links(self):
        entity = stable_entity(EntityType.DOMAIN, "example.com")
        loop = Link(id="link-loop", source=entity.id, target=entity.id, label="subdomain")
        _, links = self.resolver.resolve([entity], [loop])
        self.assertEqual(links, [])

    def test_fold_keeps_identity_and_first_known_facts(self):
        stored = stable_entity(EntityType.ORGANIZATION, "Edgecast", properties={"asn": "AS15133"})
        incoming = stable_entity(EntityType.ORGANIZATION, "Edgecast", label="Edgecast Inc",
                                 properties={"asn": "AS0", "country": "US"})

        folded, changed = fold_entity(stored, incoming)

        self.assertTrue(changed)
        self.assertEqual(folded.id, stored.id)
        self.assertEqual(folded.value, "Edgecast")
        self.assertEqual(folded.data["label"], "Edgecast Inc")
        self.assertEqual(folded.properties, {"asn": "AS15133", "country": "US"})

    def test_fold_without_new_information_is_a_no_op(self):
        stored = stable_entity(EntityType.DOMAIN, "example.com")
        folded, changed = fold_entity(stored, stable_entity(EntityType.DOMAIN, "example.com"))
        self.assertFalse(changed)
        self.assertIs(folded, stored)


if __name__ == '__main__':
    unittest.main()
