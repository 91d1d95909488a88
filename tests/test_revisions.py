import asyncio
import tempfile
import unittest
from pathlib import Path

from fakes import FakeRunner

from skillsync.client import TransportError
from skillsync.memo import RunCache
from skillsync.revisions import RevisionResolver, clone_dir_for, is_auth_required


class TestRevisionResolver(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.cache_root = Path(self._td.name) / "git-clone"

    def tearDown(self) -> None:
        self._td.cleanup()

    def _resolver(self, runner: FakeRunner) -> RevisionResolver:
        return RevisionResolver(clone_cache=self.cache_root, cache=RunCache(), runner=runner, delay_s=0)

    async def test_api_lookup_is_preferred(self) -> None:
        runner = FakeRunner(api_revs={"acme/tools": "r1"})
        rev = await self._resolver(runner).resolve("acme/tools")
        self.assertEqual(rev, "r1")
        self.assertEqual(runner.counts["clone:acme/tools"], 0)

    async def test_falls_back_to_shallow_clone(self) -> None:
        runner = FakeRunner(clone_revs={"acme/tools": "r2"})
        rev = await self._resolver(runner).resolve("acme/tools")
        self.assertEqual(rev, "r2")
        # The metadata lookup is retried before falling back.
        self.assertEqual(runner.counts["gh:acme/tools"], 3)
        clone = next(c for c in runner.calls if c[:2] == ("git", "clone"))
        self.assertIn("--depth", clone)
        self.assertEqual(clone[-1], str(clone_dir_for(self.cache_root, "acme/tools")))

    async def test_stale_clone_is_removed(self) -> None:
        stale = clone_dir_for(self.cache_root, "acme/tools")
        stale.mkdir(parents=True)
        (stale / "leftover.txt").write_text("x", encoding="utf-8")

        runner = FakeRunner(clone_revs={"acme/tools": "r2"})
        await self._resolver(runner).resolve("acme/tools")

        self.assertFalse((stale / "leftover.txt").exists())

    async def test_auth_required_clone_yields_none(self) -> None:
        runner = FakeRunner(
            clone_errors={"acme/private": "fatal: could not read Username for 'https://github.com': terminal prompts disabled"}
        )
        with self.assertLogs("skillsync.revisions", level="WARNING"):
            rev = await self._resolver(runner).resolve("acme/private")
        self.assertIsNone(rev)

    async def test_other_clone_errors_raise(self) -> None:
        runner = FakeRunner(clone_errors={"acme/tools": "fatal: unable to access: Could not resolve host: github.com"})
        with self.assertLogs("skillsync.revisions", level="WARNING"):
            with self.assertRaises(TransportError):
                await self._resolver(runner).resolve("acme/tools")

    async def test_unreadable_head_after_clone_raises_transport_error(self) -> None:
        runner = FakeRunner(clone_revs={"acme/tools": ""}, head_errors={"acme/tools"})
        with self.assertRaisesRegex(TransportError, "failed to read HEAD of acme/tools"):
            await self._resolver(runner).resolve("acme/tools")
        self.assertEqual(runner.counts["clone:acme/tools"], 1)

    async def test_resolution_is_memoized_per_repository(self) -> None:
        runner = FakeRunner(api_revs={"acme/tools": "r1"}, delay_s=0.01)
        resolver = self._resolver(runner)

        revs = await asyncio.gather(*(resolver.resolve("acme/tools") for _ in range(5)))
        revs.append(await resolver.resolve("acme/tools"))

        self.assertEqual(set(revs), {"r1"})
        self.assertEqual(runner.counts["gh:acme/tools"], 1)

    def test_auth_markers(self) -> None:
        self.assertTrue(is_auth_required("remote authentication required but no callback set"))
        self.assertTrue(is_auth_required("remote: Repository not found."))
        self.assertFalse(is_auth_required("fatal: early EOF"))


if __name__ == "__main__":
    unittest.main()
