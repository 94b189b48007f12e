import json
import unittest

from config.settings import MB_TO_BYTES
from engine.config import load_config, parse_config, validate_config


def _raw(**slskd):
    section = {"host": "http://slskd:5030", "api_key": "key"}
    section.update(slskd)
    return {"slskd": section}


class ParseConfigTests(unittest.TestCase):
    def test_defaults(self):
        result = parse_config(_raw())
        self.assertTrue(result.ok)
        config = result.config
        self.assertEqual(config.connection.host, "http://slskd:5030")
        self.assertEqual(config.search.search_timeout_ms, 15000)
        self.assertEqual(config.search.max_wait_ms, 20000)
        self.assertEqual(config.search.min_file_size_bytes, MB_TO_BYTES)
        self.assertEqual(config.search.max_file_size_bytes, 0)
        self.assertIsNone(config.search.quality_preferences)
        self.assertFalse(config.reputation.enabled)
        self.assertEqual(config.selection.mode, "auto")
        self.assertIsNone(config.selection.timeout_seconds)

    def test_full_section(self):
        raw = _raw(
            host="https://slskd.example/",
            url_base="/slskd",
            search_timeout_ms=10000,
            max_wait_ms=30000,
            min_file_size_mb=2.5,
            max_file_size_mb=200,
            retry={"enabled": True, "max_attempts": 4, "simplify_on_retry": False, "delay_ms": 0},
            search_query={"album_query_template": "{artist} {album} {year}", "exclude_terms": ["live", " "]},
            quality_preferences={"enabled": True, "preferred_formats": [".FLAC", "mp3"], "min_bitrate": 320},
            user_reputation={"enabled": True, "auto_trust_threshold": 10},
            selection={"mode": "manual", "timeout_minutes": 15},
        )
        result = parse_config(raw)
        self.assertEqual(result.errors, ())
        config = result.config
        self.assertEqual(config.connection.host, "https://slskd.example")
        self.assertEqual(config.connection.url_base, "/slskd")
        self.assertEqual(config.search.min_file_size_bytes, int(2.5 * MB_TO_BYTES))
        self.assertEqual(config.search.max_file_size_bytes, 200 * MB_TO_BYTES)
        self.assertEqual(config.search.retry.max_attempts, 4)
        self.assertFalse(config.search.retry.simplify_on_retry)
        self.assertEqual(config.search.templates.exclude_terms, ("live",))
        self.assertEqual(config.search.quality_preferences.preferred_formats, ("flac", "mp3"))
        self.assertEqual(config.search.quality_preferences.min_bitrate, 320)
        self.assertEqual(config.reputation.auto_trust_threshold, 10)
        self.assertEqual(config.reputation.auto_flag_threshold, 3)
        self.assertEqual(config.selection.timeout_seconds, 900)

    def test_errors_are_collected(self):
        raw = _raw(
            host="slskd:5030",
            max_wait_ms="soon",
            prefer_complete_albums="yes",
            selection={"mode": "sometimes"},
            user_reputation=[],
        )
        errors = validate_config(raw)
        self.assertIn("slskd.host must be an http(s) URL", errors)
        self.assertIn("slskd.max_wait_ms must be an integer", errors)
        self.assertIn("slskd.prefer_complete_albums must be true or false", errors)
        self.assertIn("slskd.selection.mode must be one of auto, manual", errors)
        self.assertIn("slskd.user_reputation must be an object", errors)
        self.assertIsNone(parse_config(raw).config)

    def test_missing_sections(self):
        self.assertEqual(validate_config([]), ["config must be a JSON object"])
        self.assertEqual(validate_config({}), ["slskd must be an object"])
        self.assertEqual(validate_config({"slskd": {}}), ["slskd.host is required"])

    def test_cross_field_rules(self):
        errors = validate_config(_raw(min_file_size_mb=10, max_file_size_mb=5, max_wait_ms=500, poll_interval_ms=1000))
        self.assertIn("slskd.max_file_size_mb must be >= slskd.min_file_size_mb", errors)
        self.assertIn("slskd.max_wait_ms must be >= slskd.poll_interval_ms", errors)

    def test_unbalanced_template_braces(self):
        errors = validate_config(_raw(search_query={"album_query_template": "{artist {album}"}))
        self.assertEqual(len(errors), 1)
        self.assertTrue(errors[0].startswith("slskd.search_query.album_query_template has unbalanced braces"))

    def test_minimums(self):
        errors = validate_config(_raw(poll_interval_ms=0, retry={"max_attempts": 0}))
        self.assertIn("slskd.poll_interval_ms must be >= 1", errors)
        self.assertIn("slskd.retry.max_attempts must be >= 1", errors)


def test_load_config_reads_json(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(_raw()), encoding="utf-8")
    assert parse_config(load_config(str(path))).ok
