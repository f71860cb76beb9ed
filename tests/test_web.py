import unittest
from unittest import mock

import requests
from requests.structures import CaseInsensitiveDict

from streamscout.config import Settings
from streamscout.errors import RenderTimeoutError, UpstreamFetchError
from streamscout.fetchers import PageFetcher, PageSnapshot
from streamscout.web import create_app


class FakeFetcher(PageFetcher):
    """Returns a canned snapshot and remembers what it was asked for."""

    def __init__(self, snapshot=None, error=None):
        super().__init__(Settings())
        self.snapshot = snapshot
        self.error = error
        self.calls = []

    def fetch(self, url):
        self.calls.append(url)
        if self.error:
            raise self.error
        return self.snapshot


def upstream_response(status=200, body=b"", headers=None):
    r = mock.Mock()
    r.status_code = status
    r.headers = CaseInsensitiveDict(headers or {})
    r.iter_content.return_value = iter([body[i:i + 4] for i in range(0, len(body), 4)])
    return r


class AppTestCase(unittest.TestCase):
    allowlist = ()

    def setUp(self):
        self.settings = Settings(allowed_domains=self.allowlist, user_agent="test-ua")
        self.fetcher = FakeFetcher(PageSnapshot(
            url="https://example.com/watch",
            html='<html><head><title>Show</title></head>'
                 '<body><video src="/live/stream.m3u8"></video></body></html>',
        ))
        self.session = mock.Mock()
        self.app = create_app(self.settings, fetcher=self.fetcher,
                              session_factory=lambda: self.session)
        self.client = self.app.test_client()


class TestCors(AppTestCase):

    def test_preflight_is_bare_200(self):
        resp = self.client.open("/proxy", method="OPTIONS")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data, b"")
        self.assertEqual(resp.headers["Access-Control-Allow-Origin"], "*")
        self.assertEqual(resp.headers["Access-Control-Allow-Methods"], "GET, OPTIONS")
        self.assertEqual(
            resp.headers["Access-Control-Allow-Headers"],
            "Origin, X-Requested-With, Content-Type, Accept, Range",
        )

    def test_preflight_on_unknown_path(self):
        resp = self.client.open("/anything", method="OPTIONS")
        self.assertEqual(resp.status_code, 200)

    def test_error_responses_carry_cors(self):
        resp = self.client.get("/scrape")
        self.assertEqual(resp.headers["Access-Control-Allow-Origin"], "*")


class TestScrape(AppTestCase):

    def test_missing_url(self):
        resp = self.client.get("/scrape")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json(), {"ok": False, "error": "Missing ?url="})
        self.assertEqual(self.fetcher.calls, [])

    def test_unparseable_url(self):
        resp = self.client.get("/scrape", query_string={"url": "not a url"})
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.get_json()["ok"])

    def test_finds_single_manifest(self):
        resp = self.client.get("/scrape", query_string={"url": "https://example.com/watch"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), {
            "ok": True,
            "page": "https://example.com/watch",
            "meta": {"title": "Show", "ogTitle": None, "ogVideo": None, "ogDescription": None},
            "m3u8Urls": ["https://example.com/live/stream.m3u8"],
            "best": "https://example.com/live/stream.m3u8",
        })

    def test_network_observed_urls_included(self):
        self.fetcher.snapshot = PageSnapshot(
            url="https://example.com/watch",
            html="<html></html>",
            network_urls=("https://cdn.test/a.m3u8", "https://cdn.test/master.m3u8"),
        )
        body = self.client.get("/scrape", query_string={"url": "https://example.com/watch"}).get_json()
        self.assertEqual(body["m3u8Urls"], ["https://cdn.test/a.m3u8", "https://cdn.test/master.m3u8"])
        self.assertEqual(body["best"], "https://cdn.test/master.m3u8")

    def test_no_candidates(self):
        self.fetcher.snapshot = PageSnapshot(url="https://example.com/", html="<p>hi</p>")
        body = self.client.get("/scrape", query_string={"url": "https://example.com/"}).get_json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["m3u8Urls"], [])
        self.assertIsNone(body["best"])

    def test_fetch_failure_is_500(self):
        self.fetcher.error = UpstreamFetchError("Connection refused")
        resp = self.client.get("/scrape", query_string={"url": "https://example.com/watch"})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.get_json(), {"ok": False, "error": "Connection refused"})

    def test_render_timeout_is_500(self):
        self.fetcher.error = RenderTimeoutError("Timed out rendering https://example.com/watch")
        resp = self.client.get("/scrape", query_string={"url": "https://example.com/watch"})
        self.assertEqual(resp.status_code, 500)
        self.assertIn("Timed out", resp.get_json()["error"])

    def test_unexpected_fault_is_json_500(self):
        self.fetcher.error = RuntimeError("boom")
        resp = self.client.get("/scrape", query_string={"url": "https://example.com/watch"})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.get_json(), {"ok": False, "error": "boom"})

    def test_unexpected_fault_without_message(self):
        self.fetcher.error = RuntimeError()
        resp = self.client.get("/scrape", query_string={"url": "https://example.com/watch"})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.get_json(), {"ok": False, "error": "Scrape failed"})


class TestScrapeAllowlist(AppTestCase):
    allowlist = ("example.com",)

    def test_disallowed_domain(self):
        resp = self.client.get("/scrape", query_string={"url": "https://other.com"})
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json(), {"ok": False, "error": "Domain not allowed"})
        self.assertEqual(self.fetcher.calls, [])

    def test_allowed_domain(self):
        resp = self.client.get("/scrape", query_string={"url": "https://example.com/watch"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.fetcher.calls, ["https://example.com/watch"])


class TestProxy(AppTestCase):

    def test_missing_src(self):
        resp = self.client.get("/proxy")
        self.assertEqual(resp.status_code, 400)
        self.assertIn(b"src", resp.data)
        self.session.get.assert_not_called()

    def test_streams_body_and_mirrors_headers(self):
        self.session.get.return_value = upstream_response(
            status=200,
            body=b"#EXTM3U\n#EXT-X-VERSION:3\n",
            headers={
                "Content-Type": "application/vnd.apple.mpegurl",
                "Content-Length": "25",
                "ETag": '"abc"',
                "Cache-Control": "max-age=5",
                "Set-Cookie": "secret=1",
                "Access-Control-Allow-Origin": "https://player.test",
            },
        )

        resp = self.client.get("/proxy", query_string={"src": "https://cdn.test/live/index.m3u8"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data, b"#EXTM3U\n#EXT-X-VERSION:3\n")
        self.assertEqual(resp.headers["Content-Type"], "application/vnd.apple.mpegurl")
        self.assertEqual(resp.headers["Content-Length"], "25")
        self.assertEqual(resp.headers["ETag"], '"abc"')
        self.assertEqual(resp.headers["Cache-Control"], "max-age=5")
        self.assertEqual(resp.headers["Access-Control-Allow-Origin"], "*")
        self.assertNotIn("Set-Cookie", resp.headers)

        args, kwargs = self.session.get.call_args
        self.assertEqual(args, ("https://cdn.test/live/index.m3u8",))
        self.assertTrue(kwargs["stream"])
        self.assertEqual(kwargs["timeout"], (5.0, 20.0))
        self.assertEqual(kwargs["headers"]["Referer"], "https://cdn.test")
        self.assertEqual(kwargs["headers"]["User-Agent"], "test-ua")
        self.assertNotIn("Range", kwargs["headers"])
        self.assertEqual(self.session.max_redirects, 5)

    def test_range_forwarded_verbatim(self):
        self.session.get.return_value = upstream_response(
            status=206,
            body=b"x" * 100,
            headers={
                "Content-Type": "video/mp2t",
                "Content-Range": "bytes 0-99/1000",
                "Accept-Ranges": "bytes",
            },
        )

        resp = self.client.get(
            "/proxy",
            query_string={"src": "https://cdn.test/seg0.ts"},
            headers={"Range": "bytes=0-99"},
        )

        self.assertEqual(resp.status_code, 206)
        self.assertEqual(len(resp.data), 100)
        self.assertEqual(resp.headers["Content-Range"], "bytes 0-99/1000")
        self.assertEqual(resp.headers["Accept-Ranges"], "bytes")
        self.assertEqual(self.session.get.call_args[1]["headers"]["Range"], "bytes=0-99")

    def test_missing_content_type_defaults_to_octet_stream(self):
        self.session.get.return_value = upstream_response(body=b"data")
        resp = self.client.get("/proxy", query_string={"src": "https://cdn.test/blob"})
        self.assertEqual(resp.headers["Content-Type"], "application/octet-stream")

    def test_upstream_closed_after_streaming(self):
        upstream = upstream_response(body=b"abcdefgh", headers={"Content-Type": "video/mp2t"})
        self.session.get.return_value = upstream

        resp = self.client.get("/proxy", query_string={"src": "https://cdn.test/seg.ts"})
        self.assertEqual(resp.data, b"abcdefgh")
        resp.close()

        upstream.close.assert_called_once()
        self.session.close.assert_called_once()

    def test_upstream_404_is_bad_gateway(self):
        upstream = upstream_response(status=404)
        self.session.get.return_value = upstream

        resp = self.client.get("/proxy", query_string={"src": "https://cdn.test/missing.m3u8"})

        self.assertEqual(resp.status_code, 502)
        self.assertTrue(resp.data.startswith(b"Upstream error:"))
        self.assertIn(b"404", resp.data)
        upstream.close.assert_called_once()

    def test_upstream_503_is_bad_gateway(self):
        upstream = upstream_response(status=503)
        self.session.get.return_value = upstream

        resp = self.client.get("/proxy", query_string={"src": "https://cdn.test/live.m3u8"})

        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.data, b"Upstream error: Request failed with status code 503")
        upstream.close.assert_called_once()

    def test_upstream_304_is_relayed(self):
        upstream = upstream_response(status=304, headers={"ETag": '"v1"'})
        self.session.get.return_value = upstream

        resp = self.client.get("/proxy", query_string={"src": "https://cdn.test/live.m3u8"})
        resp.close()

        self.assertEqual(resp.status_code, 304)
        self.assertEqual(resp.headers["ETag"], '"v1"')
        self.assertEqual(resp.headers["Access-Control-Allow-Origin"], "*")
        upstream.close.assert_called_once()

    def test_upstream_399_is_relayed(self):
        self.session.get.return_value = upstream_response(status=399, body=b"ok")

        resp = self.client.get("/proxy", query_string={"src": "https://cdn.test/odd"})

        self.assertEqual(resp.status_code, 399)
        self.assertEqual(resp.data, b"ok")

    def test_network_error_is_bad_gateway(self):
        self.session.get.side_effect = requests.ConnectionError("Connection refused")

        resp = self.client.get("/proxy", query_string={"src": "https://cdn.test/a.m3u8"})

        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.data, b"Upstream error: Connection refused")
        self.assertEqual(resp.headers["Access-Control-Allow-Origin"], "*")
        self.session.close.assert_called_once()


class TestProxyAllowlist(AppTestCase):
    allowlist = ("example.com",)

    def test_disallowed_src(self):
        resp = self.client.get("/proxy", query_string={"src": "https://example.com.evil.com/a.m3u8"})
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.data, b"Domain not allowed")
        self.session.get.assert_not_called()


if __name__ == "__main__":
    unittest.main()
