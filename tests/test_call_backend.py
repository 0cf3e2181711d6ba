import asyncio
import tempfile
import threading
import unittest
from pathlib import Path

import httpx
from fastapi.testclient import TestClient

from call_backend.auth import sign
from call_backend.debounce import CallDebouncer, debounce_key
from call_backend.directory import PhoneDirectory
from call_backend.server import create_app
from call_backend.telephony import TelephonyError

SECRET = "test-secret"


def auth_header(user_id: int, secret: str = SECRET) -> dict:
    return {"Authorization": f"Bearer {user_id}.{sign(secret, user_id)}"}


class DummyTelephony:
    def __init__(self, gate=None, exc=None):
        self.gate = gate
        self.exc = exc
        self.calls = []
        self.started = asyncio.Event() if gate is not None else None

    async def place_call(self, to_number):
        self.calls.append(to_number)
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.exc:
            raise self.exc
        return "CA123"


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class BackendTestBase:
    def make_app(self, telephony=None, debouncer=None, scope="global"):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.directory = PhoneDirectory(Path(self.tmp.name) / "backend.db")
        self.directory.set_phone(1, "+15550101")
        self.directory.set_phone(2, "+15550102")
        self.telephony = telephony or DummyTelephony()
        self.debouncer = debouncer or CallDebouncer()
        return create_app(
            secret=SECRET,
            directory=self.directory,
            telephony=self.telephony,
            debouncer=self.debouncer,
            debounce_scope=scope,
        )


class PlaceCallTests(BackendTestBase, unittest.TestCase):
    def setUp(self):
        self.client = TestClient(self.make_app())

    def test_success_returns_callable_result(self):
        response = self.client.post("/placeCall", json={"data": {}}, headers=auth_header(1))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"result": {"result": "Call initiated to +15550101"}})
        self.assertEqual(self.telephony.calls, ["+15550101"])
        self.assertFalse(self.debouncer.is_busy("global"))

    def test_missing_or_forged_token_is_unauthenticated(self):
        missing = self.client.post("/placeCall", json={"data": {}})
        forged = self.client.post("/placeCall", json={"data": {}}, headers=auth_header(1, secret="other"))

        for response in (missing, forged):
            self.assertEqual(response.status_code, 401)
            self.assertEqual(response.json()["error"]["status"], "UNAUTHENTICATED")
        self.assertEqual(self.telephony.calls, [])

    def test_unknown_phone_is_not_found_and_releases_lock(self):
        response = self.client.post("/placeCall", json={"data": {}}, headers=auth_header(99))

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["status"], "NOT_FOUND")
        self.assertFalse(self.debouncer.is_busy("global"))

    def test_telephony_failure_is_internal(self):
        self.telephony.exc = TelephonyError("twilio_status_500")
        response = self.client.post("/placeCall", json={"data": {}}, headers=auth_header(1))

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"], {"status": "INTERNAL", "message": "Failed to initiate call."})
        self.assertFalse(self.debouncer.is_busy("global"))

    def test_register_phone_then_call_it(self):
        saved = self.client.put("/users/me/phone", json={"data": {"phone": "+447700900123"}}, headers=auth_header(5))
        self.assertEqual(saved.status_code, 200)
        self.assertEqual(self.directory.get_phone(5), "+447700900123")

        bad = self.client.put("/users/me/phone", json={"data": {"phone": "12345"}}, headers=auth_header(5))
        self.assertEqual(bad.status_code, 400)
        self.assertEqual(bad.json()["error"]["status"], "INVALID_ARGUMENT")

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["ok"])


class ConcurrentPlaceCallTests(BackendTestBase, unittest.IsolatedAsyncioTestCase):
    async def call_pair(self, scope, first_user, second_user):
        gate = asyncio.Event()
        app = self.make_app(telephony=DummyTelephony(gate=gate), scope=scope)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://backend") as client:
            first = asyncio.create_task(
                client.post("/placeCall", json={"data": {}}, headers=auth_header(first_user))
            )
            await self.telephony.started.wait()
            second_task = asyncio.create_task(
                client.post("/placeCall", json={"data": {}}, headers=auth_header(second_user))
            )
            for _ in range(200):
                if second_task.done() or len(self.telephony.calls) == 2:
                    break
                await asyncio.sleep(0.01)
            gate.set()
            return await asyncio.gather(first, second_task)

    async def test_only_one_of_two_concurrent_calls_goes_through(self):
        first, second = await self.call_pair("global", 1, 2)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 429)
        self.assertEqual(second.json()["error"]["status"], "RESOURCE_EXHAUSTED")
        self.assertEqual(len(self.telephony.calls), 1)
        self.assertFalse(self.debouncer.is_busy("global"))

    async def test_phone_lookup_runs_off_the_event_loop_thread(self):
        app = self.make_app()
        loop_thread = threading.get_ident()
        lookup_threads = []
        get_phone = self.directory.get_phone

        def recording_get_phone(user_id):
            lookup_threads.append(threading.get_ident())
            return get_phone(user_id)

        self.directory.get_phone = recording_get_phone
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://backend") as client:
            response = await client.post("/placeCall", json={"data": {}}, headers=auth_header(1))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(lookup_threads), 1)
        self.assertNotEqual(lookup_threads[0], loop_thread)

    async def test_user_scope_lets_different_users_call_together(self):
        first, second = await self.call_pair("user", 1, 2)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(self.telephony.calls, ["+15550101", "+15550102"])


class CreateAppTests(unittest.TestCase):
    def test_missing_secret_or_bad_scope_fails_at_startup(self):
        with self.assertRaisesRegex(RuntimeError, "CALL_BACKEND_SECRET is empty"):
            create_app(secret="", telephony=DummyTelephony())
        with self.assertRaisesRegex(RuntimeError, "must be global or user"):
            create_app(secret=SECRET, telephony=DummyTelephony(), debounce_scope="region")


class CallDebouncerTests(unittest.TestCase):
    def test_busy_key_rejects_second_acquire(self):
        debouncer = CallDebouncer(reset_after_sec=5, clock=FakeClock())
        token = debouncer.try_acquire("global")

        self.assertIsNotNone(token)
        self.assertIsNone(debouncer.try_acquire("global"))
        self.assertTrue(debouncer.release("global", token))
        self.assertIsNotNone(debouncer.try_acquire("global"))

    def test_stuck_holder_is_force_released_after_timeout(self):
        clock = FakeClock()
        debouncer = CallDebouncer(reset_after_sec=5, clock=clock)
        stale = debouncer.try_acquire("global")

        clock.now += 4.9
        self.assertIsNone(debouncer.try_acquire("global"))

        clock.now += 0.2
        fresh = debouncer.try_acquire("global")
        self.assertIsNotNone(fresh)
        self.assertNotEqual(fresh, stale)

        # late release from the old holder leaves the new one in place
        self.assertFalse(debouncer.release("global", stale))
        self.assertTrue(debouncer.is_busy("global"))
        self.assertTrue(debouncer.release("global", fresh))
        self.assertFalse(debouncer.is_busy("global"))

    def test_key_scope(self):
        self.assertEqual(debounce_key("global", 5), "global")
        self.assertEqual(debounce_key("user", 5), "user:5")


if __name__ == "__main__":
    unittest.main()
