import json
import tempfile
import unittest
from pathlib import Path

import httpx

from skillsync.client import InputError, ListingClient, SkillsyncHTTPError
from skillsync.sources import (
    SourceRecord,
    collect,
    dedupe_sources,
    get_listing,
    load_sources,
    paginate_skills_sh,
    paginate_skillsdirectory_com,
    read_sources,
    write_sources,
)


async def _agen(items):
    for item in items:
        yield item


class TestCollect(unittest.IsolatedAsyncioTestCase):
    async def test_collect_dedupes_and_sorts(self) -> None:
        records = [
            SourceRecord(name="zeta", source="b/repo"),
            SourceRecord(name="alpha", source="b/repo"),
            SourceRecord(name="zeta", source="b/repo", path="skills/zeta/SKILL.md"),
            SourceRecord(name="beta", source="a/repo"),
            SourceRecord(name="beta", source="a/repo"),
        ]
        out = await collect(_agen(records))
        self.assertEqual(
            [r.key for r in out],
            [("a/repo", "beta"), ("b/repo", "alpha"), ("b/repo", "zeta")],
        )
        # First occurrence wins.
        self.assertIsNone(out[2].path)

    def test_dedupe_keeps_listing_order(self) -> None:
        records = [
            SourceRecord(name="b", source="x/y"),
            SourceRecord(name="a", source="x/y"),
            SourceRecord(name="b", source="x/y"),
        ]
        self.assertEqual([r.name for r in dedupe_sources(records)], ["b", "a"])


class TestPagination(unittest.IsolatedAsyncioTestCase):
    async def test_skills_sh_pages_until_empty(self) -> None:
        offsets: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            offset = request.url.params["offset"]
            offsets.append(offset)
            if offset == "0":
                return httpx.Response(
                    200,
                    json={"skills": [{"skillId": "pdf", "source": "acme/skills"}, {"skillId": "docx", "source": "acme/skills"}]},
                )
            if offset == "100":
                return httpx.Response(200, json={"skills": [{"skillId": "pdf", "source": "acme/skills"}]})
            return httpx.Response(200, json={"skills": []})

        async with ListingClient(transport=httpx.MockTransport(handler)) as client:
            out = await collect(paginate_skills_sh(client, delay_s=0))

        self.assertEqual(offsets, ["0", "100", "200"])
        self.assertEqual([r.name for r in out], ["docx", "pdf"])

    async def test_skillsdirectory_keeps_path(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["page"] == "1":
                return httpx.Response(
                    200,
                    json={
                        "skills": [
                            {"name": "Web Fetch", "githubRepoFullName": "acme/tools", "skillFilePath": "skills/web-fetch/SKILL.md"}
                        ]
                    },
                )
            return httpx.Response(200, json={"skills": []})

        async with ListingClient(transport=httpx.MockTransport(handler)) as client:
            out = await collect(paginate_skillsdirectory_com(client, delay_s=0))

        self.assertEqual(out, [SourceRecord(name="Web Fetch", source="acme/tools", path="skills/web-fetch/SKILL.md")])

    async def test_page_fetch_is_retried(self) -> None:
        attempts = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["offset"] == "0":
                attempts["n"] += 1
                if attempts["n"] < 3:
                    return httpx.Response(502, text="bad gateway")
                return httpx.Response(200, json={"skills": [{"skillId": "pdf", "source": "acme/skills"}]})
            return httpx.Response(200, json={"skills": []})

        async with ListingClient(transport=httpx.MockTransport(handler)) as client:
            out = await collect(paginate_skills_sh(client, attempts=3, delay_s=0))

        self.assertEqual(attempts["n"], 3)
        self.assertEqual(len(out), 1)

    async def test_page_fetch_error_propagates_after_retries(self) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(500, text="boom")

        async with ListingClient(transport=httpx.MockTransport(handler)) as client:
            with self.assertRaises(SkillsyncHTTPError):
                await collect(paginate_skills_sh(client, attempts=3, delay_s=0))

        self.assertEqual(calls["n"], 3)

    def test_unknown_source_is_input_error(self) -> None:
        with self.assertRaises(InputError):
            get_listing("example.com")


class TestSourceFiles(unittest.TestCase):
    def test_write_then_load_groups_by_repository(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            write_sources(
                root / "source-a.json",
                [SourceRecord(name="beta", source="acme/tools"), SourceRecord(name="alpha", source="acme/tools")],
            )
            (root / "source-custom.json").write_text(
                json.dumps([{"name": "beta", "source": "acme/tools"}, {"name": "pdf", "source": "other/skills"}]),
                encoding="utf-8",
            )

            grouped = load_sources([root / "source-custom.json", root / "source-a.json", root / "missing.json"])

        self.assertEqual(sorted(grouped), ["acme/tools", "other/skills"])
        self.assertEqual([r.name for r in grouped["acme/tools"]], ["beta", "alpha"])

    def test_read_skips_malformed_records(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "source.json"
            path.write_text(json.dumps([{"name": "ok", "source": "a/b"}, {"name": "bad"}, "junk"]), encoding="utf-8")
            with self.assertLogs("skillsync.sources", level="WARNING"):
                records = read_sources(path)

        self.assertEqual(records, [SourceRecord(name="ok", source="a/b")])


if __name__ == "__main__":
    unittest.main()
