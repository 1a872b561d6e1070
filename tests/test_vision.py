import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

from stubs import decision, make_engine

from kyc_core.errors import DiscoveryUnreachable, Malformed, RateLimited, SessionNotFound
from kyc_core.prompts import VISION_INSTRUCTIONS, VISION_REINFORCEMENT
from kyc_core.structs import EnvironmentVerdict
from kyc_core.vision import VisionCheck

FRAME = b"\xff\xd8\xff\xe0fake-jpeg"


def verdict(kind="NONE", warning=None):
    return EnvironmentVerdict(
        warning_kind=kind,
        face_visible=kind != "NO_FACE",
        camera_blocked=kind == "CAMERA_BLOCKED",
        environment="home",
        warning=warning,
    )


def make_vision(send_side_effect=None, return_value=None, endpoint=None):
    gateway = MagicMock()
    gateway.send = AsyncMock(side_effect=send_side_effect, return_value=return_value or verdict())
    resolver = MagicMock()
    resolver.resolve_or_default = AsyncMock(return_value="gemini-1.5-flash")
    return VisionCheck(gateway, resolver, endpoint=endpoint), gateway, resolver


class TestVisionCheck(unittest.TestCase):
    def test_analyze(self):
        vision, gateway, _ = make_vision(return_value=verdict("MULTIPLE_PEOPLE", "Someone behind the user"))

        async def run_test():
            result = await vision.analyze(FRAME, "image/png")
            self.assertEqual(result.warning_kind, "MULTIPLE_PEOPLE")

            endpoint, instructions, history, new_input = gateway.send.call_args.args
            kwargs = gateway.send.call_args.kwargs
            self.assertEqual(endpoint, "gemini-1.5-flash")
            self.assertEqual(instructions, VISION_INSTRUCTIONS)
            self.assertEqual(history, [])
            self.assertIs(kwargs["response_model"], EnvironmentVerdict)
            self.assertEqual(kwargs["reinforcement"], VISION_REINFORCEMENT)
            self.assertEqual(kwargs["image"].data, FRAME)
            self.assertEqual(kwargs["image"].mime_type, "image/png")

        asyncio.run(run_test())

    def test_endpoint_override(self):
        vision, gateway, resolver = make_vision(endpoint="llama-4-scout")

        async def run_test():
            await vision.analyze(FRAME)
            self.assertEqual(gateway.send.call_args.args[0], "llama-4-scout")
            resolver.resolve_or_default.assert_not_called()

        asyncio.run(run_test())

    def test_failures_yield_no_verdict(self):
        for failure in (Malformed("bad json"), RateLimited("429")):
            vision, _, _ = make_vision(send_side_effect=failure)

            async def run_test():
                self.assertIsNone(await vision.analyze(FRAME))

            asyncio.run(run_test())

    def test_resolver_failure_yields_no_verdict(self):
        vision, gateway, resolver = make_vision()
        resolver.resolve_or_default.side_effect = DiscoveryUnreachable("offline")

        async def run_test():
            self.assertIsNone(await vision.analyze(FRAME))
            gateway.send.assert_not_called()

        asyncio.run(run_test())

    def test_empty_frame(self):
        vision, gateway, _ = make_vision()

        async def run_test():
            self.assertIsNone(await vision.analyze(b""))
            gateway.send.assert_not_called()

        asyncio.run(run_test())


class TestEnvironmentLog(unittest.TestCase):
    def test_warnings_are_logged_without_touching_status(self):
        vision = MagicMock()
        vision.analyze = AsyncMock(return_value=verdict("CAMERA_BLOCKED", "Lens covered"))
        engine, _ = make_engine(vision=vision)

        async def run_test():
            sid = (await engine.start("en")).session_id
            session = engine.inspect(sid)
            before = len(session.history)

            result = await engine.analyze_frame(sid, FRAME)
            self.assertEqual(result.warning_kind, "CAMERA_BLOCKED")
            self.assertEqual(len(session.environment_log), 1)
            self.assertEqual(session.environment_log[0].warning_kind, "CAMERA_BLOCKED")
            self.assertEqual(session.environment_log[0].message, "Lens covered")
            self.assertEqual(len(session.history), before)
            self.assertEqual(session.status, "ACTIVE")

        asyncio.run(run_test())

    def test_clean_frames_are_not_logged(self):
        vision = MagicMock()
        vision.analyze = AsyncMock(return_value=verdict())
        engine, _ = make_engine(vision=vision)

        async def run_test():
            sid = (await engine.start("en")).session_id
            await engine.analyze_frame(sid, FRAME)
            self.assertEqual(engine.inspect(sid).environment_log, [])

        asyncio.run(run_test())

    def test_no_log_after_verdict(self):
        vision = MagicMock()
        vision.analyze = AsyncMock(return_value=verdict("NO_FACE", "User left"))
        engine, gateway = make_engine(vision=vision)
        gateway.send.return_value = decision("APPROVED", "Verified.")

        async def run_test():
            sid = (await engine.start("en")).session_id
            await engine.process(sid, "I understand the risks")
            await engine.analyze_frame(sid, FRAME)
            session = engine.inspect(sid)
            self.assertEqual(session.environment_log, [])
            self.assertEqual(session.status, "APPROVED")

        asyncio.run(run_test())

    def test_unknown_session(self):
        engine, _ = make_engine(vision=MagicMock())

        async def run_test():
            with self.assertRaises(SessionNotFound):
                await engine.analyze_frame("missing", FRAME)

        asyncio.run(run_test())

    def test_without_vision_check(self):
        engine, _ = make_engine()

        async def run_test():
            sid = (await engine.start("en")).session_id
            self.assertIsNone(await engine.analyze_frame(sid, FRAME))

        asyncio.run(run_test())


if __name__ == '__main__':
    unittest.main()
