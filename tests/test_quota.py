import threading
import unittest

import sys
import os
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.models import ProviderConfig, QuotaWindow
from core.quota import DEFAULT_PROVIDER, MINUTE, SECOND, QuotaTracker, estimated_time


class FakeClock:
    def __init__(self, now=1_700_000_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


def _provider(name, *windows, requires_key=False):
    return ProviderConfig(provider=name, display_name=name.title(), windows=list(windows), requires_key=requires_key)


class TestQuotaTracker(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.tracker = QuotaTracker(
            providers=[
                _provider("acme", QuotaWindow(window_ms=MINUTE, limit=3, label="per minute")),
                _provider("burst",
                          QuotaWindow(window_ms=SECOND, limit=2, label="per second"),
                          QuotaWindow(window_ms=MINUTE, limit=3, label="per minute")),
            ],
            transform_providers={"acme_lookup": "acme"},
            clock=self.clock,
        )

    def test_denies_the_request_after_the_limit_then_recovers(self):
        for _ in range(3):
            self.clock.advance(1000)
            self.assertTrue(self.tracker.consume("acme").allowed)

        denied = self.tracker.consume("acme")
        self.assertFalse(denied.allowed)
        self.assertGreater(denied.quota.wait_ms, 0)
        self.assertLessEqual(denied.quota.wait_ms, MINUTE)
        self.assertFalse(denied.quota.available)

        self.clock.advance(denied.quota.wait_ms)
        self.assertTrue(self.tracker.consume("acme").allowed)

    def test_denial_records_nothing(self):
        for _ in range(3):
            self.tracker.consume("acme")
        self.tracker.consume("acme")
        self.tracker.consume("acme")
        window = self.tracker.status("acme").windows[0]
        self.assertEqual(window.used, 3)
        self.assertEqual(window.remaining, 0)

    def test_every_window_must_have_room(self):
        self.assertTrue(self.tracker.consume("burst").allowed)
        self.assertTrue(self.tracker.consume("burst").allowed)

        per_second = self.tracker.consume("burst")
        self.assertFalse(per_second.allowed)
        self.assertEqual(per_second.quota.wait_ms, 1000)

        self.clock.advance(1000)
        self.assertTrue(self.tracker.consume("burst").allowed)

        self.clock.advance(1000)
        per_minute = self.tracker.consume("burst")
        self.assertFalse(per_minute.allowed)
        self.assertEqual(per_minute.quota.wait_ms, MINUTE - 2000)

    def test_concurrent_consumers_share_the_last_unit(self):
        for _ in range(2):
            self.tracker.consume("acme")

        barrier = threading.Barrier(16)
        outcomes = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            decision = self.tracker.consume("acme")
            with lock:
                outcomes.append(decision.allowed)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(outcomes.count(True), 1)
        self.assertEqual(self.tracker.status("acme").windows[0].used, 3)

    def test_provider_mapping_falls_back_to_default(self):
        self.assertEqual(self.tracker.provider_for("acme_lookup"), "acme")
        self.assertEqual(self.tracker.provider_for("something_else"), DEFAULT_PROVIDER)
        for _ in range(100):
            self.assertTrue(self.tracker.consume(DEFAULT_PROVIDER).allowed)

    def test_unknown_provider_is_unlimited(self):
        decision = self.tracker.consume("never-registered")
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.quota.provider, "never-registered")

    def test_status_reports_reset_time(self):
        self.tracker.consume("acme")
        first_call = self.clock.now
        window = self.tracker.status("acme").windows[0]
        self.assertEqual(window.reset_at, first_call + MINUTE)
        self.assertEqual(window.label, "per minute")

    def test_key_gated_provider_reports_configuration(self):
        tracker = QuotaTracker(
            providers=[_provider("paid", QuotaWindow(window_ms=SECOND, limit=1, label="per second"), requires_key=True)],
            is_configured=lambda provider: False,
            clock=self.clock,
        )
        status = tracker.status("paid")
        self.assertFalse(status.configured)
        self.assertFalse(status.available)

    def test_default_catalog_mapping(self):
        tracker = QuotaTracker()
        self.assertEqual(tracker.provider_for("shodan_lookup"), "shodan")
        self.assertEqual(tracker.provider_for("oathnet_breach_check"), "oathnet")
        self.assertEqual(tracker.provider_for("oathnet_discord_lookup"), "oathnet")
        self.assertEqual(tracker.provider_for("tech_stack_detection"), "techstack")
        self.assertEqual(len(tracker.status("oathnet").windows), 2)
        self.assertEqual(tracker.display_name("shodan"), "Shodan")

    def test_estimated_time(self):
        self.assertEqual(estimated_time("nmap_full_scan")[0], 120000)
        self.assertLess(estimated_time("dns_resolve")[0], estimated_time("nmap_quick_scan")[0])


if __name__ == '__main__':
    unittest.main()
