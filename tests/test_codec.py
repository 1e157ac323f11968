import unittest

import codec


class TestCodec(unittest.TestCase):

    def test_round_trip(self):
        samples = [
            "",
            "plain text",
            "<html><body><p>Héllo wörld — ✓ 日本語</p></body></html>",
            "<!DOCTYPE html><html><body>already a document</body></html>",
            "x" * 500_000,
            "emoji 🚀 and a lone surrogate \ud800 survive",
        ]
        for text in samples:
            with self.subTest(length=len(text)):
                self.assertEqual(codec.decompress(codec.compress(text)), text)

    def test_token_is_printable_ascii(self):
        token = codec.compress("<div>" + "résumé " * 200 + "</div>")
        self.assertTrue(token.isascii())
        self.assertTrue(token.isprintable())
        self.assertNotIn("<", token)

    def test_repetitive_html_shrinks(self):
        html = "<li>Managed deployments</li>" * 1000
        self.assertLess(len(codec.compress(html)), len(html))

    def test_document_passes_through_unchanged(self):
        for doc in ("<!DOCTYPE html><html></html>", "<!doctype html>\n<p>legacy</p>", "  <!DOCTYPE html>"):
            with self.subTest(doc=doc):
                self.assertEqual(codec.decompress(doc), doc)

    def test_malformed_token_raises_decompression_error(self):
        for bad in ("not-a-token!!", "<p>fragment without doctype</p>", "QUJD"):
            with self.subTest(bad=bad):
                with self.assertRaises(codec.DecompressionError):
                    codec.decompress(bad)


if __name__ == "__main__":
    unittest.main()
