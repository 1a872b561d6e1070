import asyncio
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from stubs import decision, make_engine

from kyc_core.orchestrator import SessionStore
from kyc_core.structs import PriorDecision, RespondentUtterance, SystemInstruction


class TestSessionStore(unittest.TestCase):
    def test_memory_mode_writes_nothing(self):
        store = SessionStore()
        engine, _ = make_engine(store=store)

        async def run_test():
            sid = (await engine.start("en")).session_id
            self.assertIs(store.get(sid), engine.inspect(sid))
            self.assertIsNone(store.data_dir)
            self.assertEqual(store.load_all(), 0)
            self.assertFalse(await store.save(store.get(sid)))

        asyncio.run(run_test())

    def test_round_trip(self):
        with tempfile.TemporaryDirectory() as tmp:
            engine, gateway = make_engine(store=SessionStore(Path(tmp)))
            gateway.send.return_value = decision("REJECTED", "We cannot proceed.", risk=True)

            async def run_test():
                sid = (await engine.start("en-IN")).session_id
                await engine.process(sid, "My Telegram mentor gave me a task")
                return sid

            sid = asyncio.run(run_test())
            self.assertTrue((Path(tmp) / f"{sid}.json").exists())

            reloaded = SessionStore(Path(tmp))
            self.assertEqual(reloaded.load_all(), 1)
            session = reloaded.get(sid)
            self.assertEqual(session.status, "REJECTED")
            self.assertTrue(session.risk_flag)
            self.assertEqual(session.language, "en-IN")
            self.assertEqual(
                [type(t) for t in session.history],
                [SystemInstruction, PriorDecision, RespondentUtterance, PriorDecision],
            )
            self.assertEqual(session.history[-1].decision.kyc_status, "REJECTED")

    def test_write_failure_keeps_the_turn(self):
        with tempfile.TemporaryDirectory() as tmp:
            engine, gateway = make_engine(store=SessionStore(Path(tmp)))
            gateway.send.return_value = decision("APPROVED", "Thank you, you are verified.")

            async def run_test():
                with patch("kyc_core.orchestrator.aiofiles.open", side_effect=OSError("No space left on device")):
                    sid = (await engine.start("en")).session_id
                    outcome = await engine.process(sid, "I opened it for my own salary")
                self.assertEqual(outcome.status, "APPROVED")
                self.assertFalse(outcome.fallback)
                self.assertEqual(len(engine.inspect(sid).history), 4)

                self.assertTrue(await engine.store.save(engine.inspect(sid)))
                return sid

            sid = asyncio.run(run_test())
            reloaded = SessionStore(Path(tmp))
            self.assertEqual(reloaded.load_all(), 1)
            self.assertEqual(reloaded.get(sid).status, "APPROVED")

    def test_unreadable_files_are_skipped(self):
        with tempfile.TemporaryDirectory() as tmp:
            (Path(tmp) / "broken.json").write_text("{not json", encoding="utf-8")
            (Path(tmp) / "incomplete.json").write_text('{"id": "x"}', encoding="utf-8")
            store = SessionStore(Path(tmp))
            self.assertEqual(store.load_all(), 0)


if __name__ == '__main__':
    unittest.main()
