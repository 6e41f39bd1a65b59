import unittest

from converter.config import MAX_VIDEO_SIZE_BYTES
from converter.conversion.errors import FileTooLarge, UnsupportedFormat
from converter.conversion.models import Container
from converter.conversion.validation import check_size, download_name, infer_formats, split_extension


class InferFormatsTests(unittest.TestCase):
    def test_mp4_converts_to_webm(self):
        self.assertEqual(infer_formats("clip.mp4"), (Container.MP4, Container.WEBM))

    def test_webm_converts_to_mp4(self):
        self.assertEqual(infer_formats("clip.webm"), (Container.WEBM, Container.MP4))

    def test_extension_is_case_insensitive(self):
        self.assertEqual(infer_formats("Holiday.MP4"), (Container.MP4, Container.WEBM))
        self.assertEqual(infer_formats("x.WebM"), (Container.WEBM, Container.MP4))

    def test_only_last_extension_counts(self):
        self.assertEqual(infer_formats("my.video.webm"), (Container.WEBM, Container.MP4))
        with self.assertRaises(UnsupportedFormat):
            infer_formats("clip.mp4.txt")

    def test_missing_extension_rejected(self):
        for name in ("clip", "", "clip."):
            with self.subTest(name=name):
                with self.assertRaises(UnsupportedFormat) as ctx:
                    infer_formats(name)
                self.assertEqual(ctx.exception.code, "UNSUPPORTED_FORMAT")

    def test_other_video_formats_rejected(self):
        for name in ("clip.mov", "clip.mkv", "clip.avi"):
            with self.subTest(name=name):
                with self.assertRaises(UnsupportedFormat):
                    infer_formats(name)

    def test_directory_part_ignored(self):
        self.assertEqual(split_extension("uploads/dir.webm/clip.mp4"), ("clip", "mp4"))
        self.assertEqual(split_extension("C:\\videos\\clip.MP4"), ("clip", "mp4"))


class CheckSizeTests(unittest.TestCase):
    def test_ceiling_is_accepted(self):
        check_size(MAX_VIDEO_SIZE_BYTES)

    def test_above_ceiling_rejected(self):
        with self.assertRaises(FileTooLarge) as ctx:
            check_size(MAX_VIDEO_SIZE_BYTES + 1)
        self.assertEqual(ctx.exception.code, "FILE_TOO_LARGE")
        self.assertIn("10MB", ctx.exception.message)

    def test_zero_length_is_accepted(self):
        check_size(0)

    def test_explicit_limit(self):
        check_size(2048, max_bytes=2048)
        with self.assertRaises(FileTooLarge):
            check_size(2049, max_bytes=2048)


class DownloadNameTests(unittest.TestCase):
    def test_base_name_with_new_extension(self):
        self.assertEqual(download_name("clip.mp4", Container.WEBM), "clip.webm")
        self.assertEqual(download_name("my.video.WEBM", Container.MP4), "my.video.mp4")

    def test_empty_base_name_falls_back(self):
        self.assertEqual(download_name(".mp4", Container.WEBM), "converted.webm")


if __name__ == "__main__":
    unittest.main()
