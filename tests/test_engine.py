import asyncio
import unittest
from unittest.mock import MagicMock

import sys
import os
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.engine import ExecutionEngine
from core.identity import make_link, stable_entity
from core.models import Entity, EntityType, ProviderConfig, QuotaWindow, TransformResult
from core.quota import MINUTE, QuotaTracker
from core.registry import TransformRegistry
from core.transform import FunctionTransform

DOMAIN = Entity(id="domain-example.com", type="domain", value="example.com")


def _resolves(entity, params):
    ip = stable_entity(EntityType.IP_ADDRESS, "93.184.216.34")
    return TransformResult(success=True, entities=[ip], links=[make_link(entity.id, ip.id, "resolves to")])


class TestExecutionEngine(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.registry = TransformRegistry()
        self.quota = QuotaTracker(
            providers=[ProviderConfig(provider="acme", display_name="Acme",
                                      windows=[QuotaWindow(window_ms=MINUTE, limit=1, label="per minute")])],
            transform_providers={"limited": "acme"},
        )
        self.engine = ExecutionEngine(self.registry, self.quota)
        self.registry.register(FunctionTransform("resolve", "Resolve", _resolves, [EntityType.DOMAIN]))

    async def test_unknown_transform_is_rejected_without_spending_quota(self):
        quota = MagicMock(spec=QuotaTracker)
        engine = ExecutionEngine(self.registry, quota)

        result = await engine.execute_transform("does_not_exist", DOMAIN)

        self.assertFalse(result.success)
        self.assertEqual(result.error, "Transform does_not_exist not found")
        self.assertEqual(result.metadata["errorKind"], "unknown_transform")
        quota.consume.assert_not_called()

    async def test_type_mismatch_neither_consumes_nor_executes(self):
        func = MagicMock(return_value=TransformResult(success=True))
        self.registry.register(FunctionTransform("ip_only", "IP Only", func, [EntityType.IP_ADDRESS]))
        quota = MagicMock(spec=QuotaTracker)
        engine = ExecutionEngine(self.registry, quota)

        result = await engine.execute_transform("ip_only", DOMAIN)

        self.assertFalse(result.success)
        self.assertEqual(result.error, "IP Only does not accept domain entities")
        self.assertEqual(result.metadata["errorKind"], "type_mismatch")
        func.assert_not_called()
        quota.consume.assert_not_called()

    async def test_successful_run_gets_engine_metadata(self):
        result = await self.engine.execute_transform("resolve", DOMAIN, {"unused": True})

        self.assertTrue(result.success)
        self.assertEqual([e.id for e in result.entities], ["ip-93.184.216.34"])
        self.assertIn("elapsedMs", result.metadata)
        self.assertEqual(result.metadata["providerKey"], "default")
        self.assertIn("quota", result.metadata)

    async def test_transform_metadata_is_not_overwritten(self):
        self.registry.register(FunctionTransform(
            "opinionated", "Opinionated",
            lambda entity, params: TransformResult(success=True, metadata={"provider": "custom"}),
            [EntityType.DOMAIN],
        ))
        result = await self.engine.execute_transform("opinionated", DOMAIN)
        self.assertEqual(result.metadata["provider"], "custom")
        self.assertEqual(result.metadata["providerKey"], "default")

    async def test_rate_limited_call_is_not_executed(self):
        func = MagicMock(return_value=TransformResult(success=True))
        self.registry.register(FunctionTransform("limited", "Limited", func, [EntityType.DOMAIN]))

        first = await self.engine.execute_transform("limited", DOMAIN)
        second = await self.engine.execute_transform("limited", DOMAIN)

        self.assertTrue(first.success)
        self.assertFalse(second.success)
        self.assertTrue(second.metadata["rateLimited"])
        self.assertEqual(second.metadata["errorKind"], "rate_limited")
        self.assertGreater(second.metadata["waitMs"], 0)
        self.assertLessEqual(second.metadata["waitMs"], MINUTE)
        self.assertIn("Acme rate limit reached", second.error)
        self.assertEqual(func.call_count, 1)

    async def test_transforms_on_one_provider_share_its_budget(self):
        quota = QuotaTracker(
            providers=[ProviderConfig(provider="acme", display_name="Acme",
                                      windows=[QuotaWindow(window_ms=MINUTE, limit=1, label="per minute")])],
            transform_providers={"a": "acme", "b": "acme"},
        )
        engine = ExecutionEngine(self.registry, quota)
        func_b = MagicMock(return_value=TransformResult(success=True))
        self.registry.register(FunctionTransform(
            "a", "A", lambda entity, params: TransformResult(success=True), [EntityType.DOMAIN]))
        self.registry.register(FunctionTransform("b", "B", func_b, [EntityType.DOMAIN]))

        first = await engine.execute_transform("a", DOMAIN)
        second = await engine.execute_transform("b", DOMAIN)

        self.assertTrue(first.success)
        self.assertFalse(second.success)
        self.assertTrue(second.metadata["rateLimited"])
        self.assertEqual(second.metadata["providerKey"], "acme")
        self.assertIn("Acme rate limit reached", second.error)
        func_b.assert_not_called()
        self.assertEqual(quota.status("acme").windows[0].used, 1)

    async def test_reused_result_object_gets_fresh_metadata(self):
        cached = TransformResult(success=True)
        self.registry.register(FunctionTransform(
            "cached", "Cached", lambda entity, params: cached, [EntityType.DOMAIN]))
        quota = QuotaTracker(
            providers=[ProviderConfig(provider="acme", display_name="Acme",
                                      windows=[QuotaWindow(window_ms=MINUTE, limit=5, label="per minute")])],
            transform_providers={"cached": "acme"},
        )
        engine = ExecutionEngine(self.registry, quota)

        first = await engine.execute_transform("cached", DOMAIN)
        second = await engine.execute_transform("cached", DOMAIN)

        self.assertEqual(first.metadata["quota"]["windows"][0]["used"], 1)
        self.assertEqual(second.metadata["quota"]["windows"][0]["used"], 2)
        self.assertIsNot(first, cached)
        self.assertEqual(cached.metadata, {})

    async def test_sync_exception_becomes_failed_result(self):
        def explode(entity, params):
            raise ValueError("boom")

        self.registry.register(FunctionTransform("sync_boom", "Sync Boom", explode, [EntityType.DOMAIN]))
        result = await self.engine.execute_transform("sync_boom", DOMAIN)

        self.assertFalse(result.success)
        self.assertEqual(result.error, "boom")
        self.assertEqual(result.metadata["errorKind"], "upstream_failure")

    async def test_async_exception_becomes_failed_result(self):
        async def explode(entity, params):
            await asyncio.sleep(0)
            raise ConnectionError()

        self.registry.register(FunctionTransform("async_boom", "Async Boom", explode, [EntityType.DOMAIN]))
        result = await self.engine.execute_transform("async_boom", DOMAIN)

        self.assertFalse(result.success)
        self.assertEqual(result.error, "ConnectionError")

    async def test_plain_dict_results_are_coerced(self):
        self.registry.register(FunctionTransform(
            "dict_result", "Dict Result",
            lambda entity, params: {"success": True, "entities": [
                {"id": "ip-1.2.3.4", "type": "ip_address", "value": "1.2.3.4"}]},
            [EntityType.DOMAIN],
        ))
        self.registry.register(FunctionTransform(
            "garbage", "Garbage", lambda entity, params: 42, [EntityType.DOMAIN]))

        coerced = await self.engine.execute_transform("dict_result", DOMAIN)
        garbage = await self.engine.execute_transform("garbage", DOMAIN)

        self.assertTrue(coerced.success)
        self.assertEqual(coerced.entities[0].type, EntityType.IP_ADDRESS)
        self.assertFalse(garbage.success)
        self.assertIn("int", garbage.error)

    async def test_execute_many_keeps_request_order(self):
        results = await self.engine.execute_many([
            ("resolve", DOMAIN, None),
            ("missing", DOMAIN, None),
            ("resolve", DOMAIN, {}),
        ])
        self.assertEqual([r.success for r in results], [True, False, True])


if __name__ == '__main__':
    unittest.main()
