from __future__ import annotations

import unittest
from pathlib import Path

from strm_watch.classifier import MediaClassifier
from strm_watch.config import SyncConfig
from strm_watch.errors import ConfigError


class MediaClassifierTests(unittest.TestCase):
    def setUp(self) -> None:
        self.classifier = MediaClassifier(
            SyncConfig(
                video_extensions=("mp4", "mkv"),
                audio_extensions=("flac",),
                ignore_extensions=("txt",),
                ignore_keywords=("sample",),
                ignore_regex=(r"^\._",),
                ignore_patterns=("*.part",),
            )
        )

    def test_media_detection_is_case_insensitive(self) -> None:
        self.assertTrue(self.classifier.is_media("/lib/Movie.MKV"))
        self.assertTrue(self.classifier.is_media(Path("/lib/song.Flac")))
        self.assertTrue(self.classifier.is_video("/lib/a.mp4"))
        self.assertFalse(self.classifier.is_video("/lib/song.flac"))
        self.assertTrue(self.classifier.is_audio("/lib/song.flac"))

    def test_non_media_and_extensionless_paths(self) -> None:
        self.assertFalse(self.classifier.is_media("/lib/poster.jpg"))
        self.assertFalse(self.classifier.is_media("/lib/mkv"))
        self.assertFalse(self.classifier.is_media("/lib/.mkv"))

    def test_ignore_rules(self) -> None:
        self.assertTrue(self.classifier.should_ignore("/lib/notes.TXT"))
        self.assertTrue(self.classifier.should_ignore("/lib/movie-sample.mkv"))
        self.assertTrue(self.classifier.should_ignore("/lib/._movie.mkv"))
        self.assertTrue(self.classifier.should_ignore("/lib/movie.mkv.part"))
        self.assertFalse(self.classifier.should_ignore("/lib/movie.mkv"))
        self.assertFalse(self.classifier.should_ignore("/lib/Sample.mkv"))

    def test_ignore_rules_only_look_at_the_file_name(self) -> None:
        self.assertFalse(self.classifier.should_ignore("/sample/movie.mkv"))

    def test_same_input_same_answer(self) -> None:
        paths = ["/lib/a.mp4", "/lib/notes.txt", "/lib/movie-sample.mkv", "/lib/cover.jpg"]
        first = [(self.classifier.is_media(p), self.classifier.should_ignore(p)) for p in paths]
        second = [(self.classifier.is_media(p), self.classifier.should_ignore(p)) for p in reversed(paths)]
        self.assertEqual(first, list(reversed(second)))

    def test_invalid_regex_fails_at_construction(self) -> None:
        with self.assertRaises(ConfigError):
            MediaClassifier(SyncConfig(ignore_regex=("([unclosed",)))

    def test_default_extension_sets(self) -> None:
        classifier = MediaClassifier(SyncConfig())
        for name in ("a.mp4", "a.m2ts", "a.rmvb", "a.mp3", "a.opus"):
            self.assertTrue(classifier.is_media(name), name)
        self.assertFalse(classifier.should_ignore("a.mp4"))


if __name__ == "__main__":
    unittest.main()
