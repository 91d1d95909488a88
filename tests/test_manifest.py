import tempfile
import unittest
from pathlib import Path

from fakes import write_skill

from skillsync.manifest import FrontmatterError, ManifestLocator, find_manifest, parse_frontmatter
from skillsync.memo import RunCache


class TestFrontmatter(unittest.TestCase):
    def test_parses_leading_block(self) -> None:
        data = parse_frontmatter("---\nname: pdf\ndescription: PDFs\n---\n# PDF\n")
        self.assertEqual(data["name"], "pdf")

    def test_document_without_block_is_empty(self) -> None:
        self.assertEqual(parse_frontmatter("# Title\n"), {})

    def test_unterminated_block_raises(self) -> None:
        with self.assertRaises(FrontmatterError):
            parse_frontmatter("---\nname: pdf\n")

    def test_non_mapping_raises(self) -> None:
        with self.assertRaises(FrontmatterError):
            parse_frontmatter("---\n- a\n- b\n---\n")


class TestFindManifest(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)

    def tearDown(self) -> None:
        self._td.cleanup()

    def test_directory_name_match(self) -> None:
        write_skill(self.root, "skills/pdf")
        self.assertEqual(find_manifest(self.root, "pdf"), "skills/pdf/SKILL.md")

    def test_directory_match_is_case_sensitive(self) -> None:
        write_skill(self.root, "skills/PDF")
        self.assertIsNone(find_manifest(self.root, "pdf"))

    def test_directory_matches_are_lexically_ordered(self) -> None:
        write_skill(self.root, "z/pdf")
        write_skill(self.root, "a/pdf")
        write_skill(self.root, ".claude/skills/pdf")
        self.assertEqual(find_manifest(self.root, "pdf"), ".claude/skills/pdf/SKILL.md")

    def test_frontmatter_match_is_case_insensitive(self) -> None:
        write_skill(self.root, "skills/web-fetch", name="Web Fetch")
        self.assertEqual(find_manifest(self.root, "web fetch"), "skills/web-fetch/SKILL.md")

    def test_directory_match_wins_over_frontmatter(self) -> None:
        write_skill(self.root, "a-first/other", name="pdf")
        write_skill(self.root, "z-last/pdf", name="something-else")
        self.assertEqual(find_manifest(self.root, "pdf"), "z-last/pdf/SKILL.md")

    def test_unparseable_manifests_are_skipped(self) -> None:
        write_skill(self.root, "a/broken", body="---\nname: [unclosed\n---\n")
        write_skill(self.root, "b/good", name="target")
        self.assertEqual(find_manifest(self.root, "target"), "b/good/SKILL.md")

    def test_not_found(self) -> None:
        write_skill(self.root, "skills/pdf", name="pdf")
        self.assertIsNone(find_manifest(self.root, "docx"))


class TestManifestLocator(unittest.IsolatedAsyncioTestCase):
    async def test_locate_is_memoized(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            write_skill(root, "skills/pdf")
            cache = RunCache()
            locator = ManifestLocator(cache=cache)

            first = await locator.locate(root, "pdf")
            second = await locator.locate(root, "pdf")

        self.assertEqual(first, "skills/pdf/SKILL.md")
        self.assertEqual(second, first)
        self.assertEqual(cache.manifests.misses[(str(root), "pdf")], 1)


if __name__ == "__main__":
    unittest.main()
