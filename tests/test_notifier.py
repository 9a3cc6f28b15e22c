import json
import unittest

import httpx

import sys
import os
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from core.notifier import Notifier


class TestNotifier(unittest.IsolatedAsyncioTestCase):

    async def test_delivers_in_the_background(self):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(204)

        notifier = Notifier("https://hooks.example.com/nodeweaver", transport=httpx.MockTransport(handler))
        task = notifier.notify_detached("service started")

        self.assertIsNotNone(task)
        await notifier.drain()
        self.assertEqual(received, [{"text": "service started"}])

    async def test_failed_delivery_is_logged_not_raised(self):
        notifier = Notifier("https://hooks.example.com/nodeweaver",
                            transport=httpx.MockTransport(lambda request: httpx.Response(500)))

        with self.assertLogs("core.notifier", level="WARNING") as logs:
            notifier.notify_detached("service started")
            await notifier.drain()

        self.assertIn("Notification delivery failed", logs.output[0])

    async def test_disabled_without_webhook(self):
        notifier = Notifier(None)
        self.assertFalse(notifier.enabled)
        self.assertIsNone(notifier.notify_detached("ignored"))
        await notifier.drain()


if __name__ == '__main__':
    unittest.main()
