"""Tests for target URL validation."""

from unittest import TestCase

from hlsproxy.errors import InvalidFormat, LoopDetected, MissingParameter
from hlsproxy.validator import validate_target

PROXY = "https://proxy.example.net"


class ValidateTargetTests(TestCase):

    def test_empty_is_missing(self):
        for raw in ("", None):
            with self.assertRaises(MissingParameter) as cm:
                validate_target(raw, PROXY)
            self.assertEqual(cm.exception.status, 400)

    def test_non_http_schemes_rejected(self):
        for raw in ("ftp://files.example.com/a.ts", "not-a-url", "file:///etc/passwd", "//cdn.example.com/a"):
            with self.assertRaises(InvalidFormat, msg=raw) as cm:
                validate_target(raw, PROXY)
            self.assertEqual(cm.exception.status, 400)
            self.assertEqual(cm.exception.message, "Invalid target URL")

    def test_unparseable_rejected(self):
        for raw in ("http://", "https://[::1/a", "http://host:99999/a", "http://host:abc/a"):
            with self.assertRaises(InvalidFormat, msg=raw) as cm:
                validate_target(raw, PROXY)
            self.assertEqual(cm.exception.message, "Invalid URL format")

    def test_loop_detected_for_proxy_prefix(self):
        for raw in (PROXY, PROXY + "/", PROXY + "/?url=https%3A%2F%2Fcdn.example.com%2Fa.m3u8", PROXY + "/health"):
            with self.assertRaises(LoopDetected, msg=raw) as cm:
                validate_target(raw, PROXY)
            self.assertEqual(cm.exception.status, 400)

    def test_loop_detected_with_trailing_slash_origin(self):
        with self.assertRaises(LoopDetected):
            validate_target(PROXY + "/x", PROXY + "/")

    def test_loop_detected_for_same_host_with_explicit_default_port(self):
        with self.assertRaises(LoopDetected):
            validate_target("https://PROXY.example.net:443/?url=x", PROXY)

    def test_other_port_on_same_host_allowed(self):
        parsed = validate_target("https://proxy.example.net:8443/a.ts", PROXY + ":444")
        self.assertEqual(parsed.port, 8443)

    def test_valid_url_returns_parts(self):
        parsed = validate_target("HTTPS://cdn.example.com/videos/abc/index.m3u8?token=1", PROXY)
        self.assertEqual(parsed.hostname, "cdn.example.com")
        self.assertEqual(parsed.path, "/videos/abc/index.m3u8")
        self.assertEqual(parsed.query, "token=1")

    def test_whitespace_and_control_in_host_rejected(self):
        for raw in ("http://exa mple.com/", "https://cdn.example.com\x00.evil/a", "http://a<b>.example/x"):
            with self.assertRaises(InvalidFormat, msg=repr(raw)) as cm:
                validate_target(raw, PROXY)
            self.assertEqual(cm.exception.message, "Invalid URL format")

    def test_space_in_path_allowed(self):
        parsed = validate_target("https://cdn.example.com/my video.mp4", PROXY)
        self.assertEqual(parsed.path, "/my video.mp4")
