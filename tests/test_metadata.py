import tempfile
import unittest
from pathlib import Path

from ssd_kit.metadata import load_class_names, resolve_class_id


class TestClassNames(unittest.TestCase):
    def _write(self, text: str) -> str:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "labels"
        path.write_text(text, encoding="utf-8")
        return str(path)

    def test_names_mapping(self) -> None:
        path = self._write("# exported\nnames:\n  0: person\n  1: 'bicycle'\n  2: \"car\"\n")
        self.assertEqual(load_class_names(path), {0: "person", 1: "bicycle", 2: "car"})

    def test_plain_label_map(self) -> None:
        path = self._write("???\nperson\nbicycle\n\n")
        self.assertEqual(load_class_names(path), {0: "???", 1: "person", 2: "bicycle"})

    def test_resolve_class_id(self) -> None:
        names = {0: "???", 1: "person", 2: "bicycle"}
        self.assertEqual(resolve_class_id(names, " PERSON "), 1)
        with self.assertRaises(ValueError):
            resolve_class_id(names, "dog")
        with self.assertRaises(ValueError):
            resolve_class_id({0: "person", 5: "Person"}, "person")
        with self.assertRaises(ValueError):
            resolve_class_id(names, "  ")


if __name__ == "__main__":
    unittest.main()
