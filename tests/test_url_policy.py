import unittest

from shiftsync.errors import InvalidSourceUrl
from shiftsync.url_policy import to_fetch_url, validate_source_url


class UrlPolicyTests(unittest.TestCase):
    def test_rejects_urls_outside_allow_list(self) -> None:
        rejected = [
            "http://evil.com",
            "ftp://icloud.com/x",
            "https://icloud.com.evil.com/x",
            "https://evilicloud.com/x",
            "http://p123-caldav.icloud.com/published/x",
            "https://user:pw@p123-caldav.icloud.com/published/x",
            "https://",
            "",
            "not a url",
        ]
        for url in rejected:
            with self.subTest(url=url):
                with self.assertRaises(InvalidSourceUrl):
                    validate_source_url(url)

    def test_accepts_icloud_urls(self) -> None:
        for url in (
            "https://p123-caldav.icloud.com/published/x",
            "webcal://p123-caldav.icloud.com/published/x",
            "WEBCAL://P123-CALDAV.ICLOUD.COM/published/x",
            "https://icloud.com/calendar.ics",
        ):
            with self.subTest(url=url):
                self.assertEqual(validate_source_url(f"  {url} "), url)

    def test_custom_host_suffixes(self) -> None:
        url = "https://calendar.example.org/feed.ics"
        self.assertEqual(validate_source_url(url, allowed_host_suffixes=["example.org"]), url)
        with self.assertRaises(InvalidSourceUrl):
            validate_source_url(url)

    def test_error_message_is_descriptive(self) -> None:
        with self.assertRaises(InvalidSourceUrl) as ctx:
            validate_source_url("http://evil.com")
        self.assertIn("https", str(ctx.exception))
        self.assertIn("icloud.com", str(ctx.exception))

    def test_webcal_is_rewritten_for_fetching(self) -> None:
        self.assertEqual(
            to_fetch_url("webcal://p123-caldav.icloud.com/published/x"),
            "https://p123-caldav.icloud.com/published/x",
        )
        self.assertEqual(to_fetch_url("https://icloud.com/x"), "https://icloud.com/x")


if __name__ == "__main__":
    unittest.main()
