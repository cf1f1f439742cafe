import asyncio
import unittest
from datetime import timedelta

import httpx

from tasktimer.clients.long_polling_client import LongPollingClient, PollingError
from tasktimer.config import LongPollingConfig

URL = "http://example.test/events"


class ScriptedServer:
    """Serve queued responses, then hold the request open like a long poll."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests = []
        self._hang = asyncio.Event()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        await self._hang.wait()
        return httpx.Response(304)


async def wait_until(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class LongPollingClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.messages = []
        self.errors = []
        self.delays = []

    def _client(self, server: ScriptedServer, **kwargs) -> LongPollingClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(server))
        self.addAsyncCleanup(http_client.aclose)

        async def fake_sleep(millis: float) -> None:
            self.delays.append(millis)

        return LongPollingClient(
            http_client,
            on_message=self.messages.append,
            on_error=self.errors.append,
            sleep_func=fake_sleep,
            **kwargs,
        )

    async def test_delivers_message_and_sends_etag_next_time(self):
        server = ScriptedServer(httpx.Response(200, text="hello", headers={"ETag": '"v1"'}))
        client = self._client(server, wait_millis=90_000)

        await client.connect(URL)
        await wait_until(lambda: len(server.requests) == 2)
        await client.close()

        self.assertEqual(self.messages, ["hello"])
        self.assertEqual(
            client.requests_sent,
            [{"Prefer": "wait=90"}, {"Prefer": "wait=90", "If-None-Match": '"v1"'}],
        )
        self.assertEqual(server.requests[1].headers["If-None-Match"], '"v1"')

    async def test_not_modified_polls_again_without_message(self):
        server = ScriptedServer(httpx.Response(304), httpx.Response(304))
        client = self._client(server)

        await client.connect(URL)
        await wait_until(lambda: len(server.requests) == 3)
        await client.close()

        self.assertEqual(self.messages, [])
        self.assertEqual(self.errors, [])
        self.assertEqual(self.delays, [])

    async def test_http_error_is_reported_and_retried_after_delay(self):
        server = ScriptedServer(
            httpx.Response(500),
            httpx.Response(200, text="recovered"),
        )
        client = self._client(server, retry_millis=1_500)

        with self.assertLogs("tasktimer.clients.long_polling_client", level="WARNING"):
            await client.connect(URL)
            await wait_until(lambda: self.messages == ["recovered"])
        await client.close()

        self.assertEqual(len(self.errors), 1)
        self.assertIsInstance(self.errors[0], PollingError)
        self.assertIn("500", str(self.errors[0]))
        self.assertEqual(self.delays, [1_500])

    async def test_transport_error_is_reported_and_retried(self):
        server = ScriptedServer(httpx.ConnectError("refused"), httpx.Response(200, text="ok"))
        client = self._client(server)

        with self.assertLogs("tasktimer.clients.long_polling_client", level="WARNING"):
            await client.connect(URL)
            await wait_until(lambda: self.messages == ["ok"])
        await client.close()

        self.assertIsInstance(self.errors[0], httpx.ConnectError)
        self.assertEqual(self.delays, [1_000])

    async def test_connect_twice_is_rejected(self):
        client = self._client(ScriptedServer())
        await client.connect(URL)

        with self.assertRaises(PollingError):
            await client.connect(URL)
        await client.close()

    async def test_close_stops_polling(self):
        server = ScriptedServer()
        client = self._client(server)
        await client.connect(URL)
        await wait_until(lambda: len(server.requests) == 1)

        await client.close()

        self.assertFalse(client.is_connected)
        self.assertEqual(client.url, URL)
        self.assertEqual(len(server.requests), 1)

    async def test_failing_message_handler_ends_polling_and_closes_client(self):
        server = ScriptedServer(httpx.Response(200, text="boom"))
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(server))

        def broken_handler(message: str) -> None:
            raise KeyError(message)

        client = LongPollingClient(http_client, on_message=broken_handler, owns_client=True)

        await client.connect(URL)
        await wait_until(lambda: not client.is_connected)

        with self.assertRaises(KeyError):
            await client.close()
        self.assertTrue(http_client.is_closed)
        self.assertEqual(len(server.requests), 1)

    async def test_create_uses_config_timing(self):
        config = LongPollingConfig(
            url=URL, wait=timedelta(seconds=2.5), retry=timedelta(milliseconds=200)
        )

        async with LongPollingClient.create(config) as client:
            self.assertEqual(client._wait, 2_500)  # pylint: disable=protected-access
            self.assertEqual(client._retry, 200)  # pylint: disable=protected-access

        self.assertTrue(client._http.is_closed)  # pylint: disable=protected-access


if __name__ == "__main__":
    unittest.main()
