import json
import unittest

import httpx

from snoozebot.call_client import (
    CallBackendClient,
    CallInternalError,
    CallNotFoundError,
    CallResourceExhaustedError,
    CallUnauthenticatedError,
    mint_token,
)


class DummyLogger:
    def info(self, *args, **kwargs):
        pass

    def warning(self, *args, **kwargs):
        pass

    def error(self, *args, **kwargs):
        pass


class CallBackendClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.requests = []
        self.responder = None
        self.client = CallBackendClient("http://backend.local/", "s3cret", DummyLogger())
        await self.client._client.aclose()
        self.client._client = httpx.AsyncClient(transport=httpx.MockTransport(self._handle))

    async def asyncTearDown(self):
        await self.client.aclose()

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    async def test_place_call_returns_result_and_signs_request(self):
        self.responder = lambda request: httpx.Response(200, json={"result": {"result": "Call initiated to +15550101"}})

        result = await self.client.place_call(42)

        self.assertEqual(result, "Call initiated to +15550101")
        request = self.requests[0]
        self.assertEqual(request.method, "POST")
        self.assertEqual(str(request.url), "http://backend.local/placeCall")
        self.assertEqual(request.headers["Authorization"], f"Bearer {mint_token('s3cret', 42)}")
        self.assertEqual(json.loads(request.content), {"data": {}})

    async def test_error_statuses_map_to_typed_errors(self):
        cases = [
            (401, "UNAUTHENTICATED", CallUnauthenticatedError, False),
            (404, "NOT_FOUND", CallNotFoundError, False),
            (429, "RESOURCE_EXHAUSTED", CallResourceExhaustedError, True),
            (500, "INTERNAL", CallInternalError, True),
        ]
        for http_status, status, error_cls, retryable in cases:
            with self.subTest(status=status):
                self.responder = lambda request, s=http_status, st=status: httpx.Response(
                    s, json={"error": {"status": st, "message": "nope"}}
                )
                with self.assertRaises(error_cls) as ctx:
                    await self.client.place_call(1)
                self.assertEqual(ctx.exception.retryable, retryable)

    async def test_http_status_without_body_still_maps(self):
        self.responder = lambda request: httpx.Response(404, text="not here")

        with self.assertRaises(CallNotFoundError):
            await self.client.place_call(1)

    async def test_transport_failure_is_internal(self):
        def boom(request):
            raise httpx.ConnectError("refused", request=request)

        self.responder = boom

        with self.assertRaises(CallInternalError) as ctx:
            await self.client.place_call(1)
        self.assertTrue(ctx.exception.retryable)

    async def test_register_phone_puts_number(self):
        self.responder = lambda request: httpx.Response(200, json={"result": {"phone": "+15550101"}})

        result = await self.client.register_phone(3, "+15550101")

        self.assertEqual(result, {"phone": "+15550101"})
        request = self.requests[0]
        self.assertEqual(request.method, "PUT")
        self.assertEqual(request.url.path, "/users/me/phone")
        self.assertEqual(json.loads(request.content), {"data": {"phone": "+15550101"}})


if __name__ == "__main__":
    unittest.main()
