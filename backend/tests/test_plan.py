import unittest

from converter.conversion.models import Container, ConversionOptions, Optimization
from converter.conversion.plan import EncodePlan, build_argv, build_plan


def opts(include_audio=True, optimization=Optimization.NONE):
    return ConversionOptions(include_audio=include_audio, optimization=optimization)


class WebmPlanTests(unittest.TestCase):
    def test_base_with_audio(self):
        plan = build_plan(Container.WEBM, opts())
        self.assertEqual(plan, EncodePlan(video_codec="vp8", audio_codec="vorbis", crf=30, video_bitrate="0"))
        self.assertEqual(
            plan.to_args(),
            ["-c:v", "libvpx", "-crf", "30", "-b:v", "0", "-c:a", "libvorbis"],
        )

    def test_base_without_audio(self):
        plan = build_plan(Container.WEBM, opts(include_audio=False))
        self.assertIsNone(plan.audio_codec)
        self.assertEqual(plan.crf, 30)
        self.assertEqual(plan.to_args()[-1], "-an")

    def test_fps_cap(self):
        plan = build_plan(Container.WEBM, opts(optimization=Optimization.LIMIT_FPS))
        self.assertEqual(plan.max_fps, 15)
        self.assertEqual(plan.crf, 30)
        args = plan.to_args()
        self.assertEqual(args[args.index("-fpsmax") + 1], "15")
        self.assertNotIn("-r", args)

    def test_duration_cap(self):
        plan = build_plan(Container.WEBM, opts(include_audio=False, optimization=Optimization.LIMIT_DURATION))
        self.assertEqual(plan.max_duration, 30)
        args = plan.to_args()
        self.assertEqual(args[args.index("-t") + 1], "30")

    def test_lower_quality(self):
        plan = build_plan(Container.WEBM, opts(optimization=Optimization.LOWER_QUALITY))
        self.assertEqual(plan.crf, 40)
        self.assertIsNone(plan.max_fps)

    def test_size_with_audio(self):
        plan = build_plan(Container.WEBM, opts(optimization=Optimization.TARGET_SIZE))
        self.assertEqual((plan.crf, plan.max_fps, plan.audio_bitrate), (40, 15, "64k"))
        self.assertEqual(plan.to_args()[-2:], ["-b:a", "64k"])

    def test_size_without_audio_has_no_audio_bitrate(self):
        plan = build_plan(Container.WEBM, opts(include_audio=False, optimization=Optimization.TARGET_SIZE))
        self.assertIsNone(plan.audio_bitrate)
        self.assertNotIn("-b:a", plan.to_args())


class Mp4PlanTests(unittest.TestCase):
    def test_base_with_audio(self):
        plan = build_plan(Container.MP4, opts())
        self.assertEqual(
            plan.to_args(),
            ["-c:v", "libx264", "-crf", "23", "-preset", "fast", "-c:a", "aac"],
        )

    def test_mirrored_optimizations(self):
        self.assertEqual(build_plan(Container.MP4, opts(optimization=Optimization.LIMIT_FPS)).max_fps, 15)
        self.assertEqual(build_plan(Container.MP4, opts(optimization=Optimization.LIMIT_DURATION)).max_duration, 30)
        self.assertEqual(build_plan(Container.MP4, opts(optimization=Optimization.LOWER_QUALITY)).crf, 30)

    def test_size_without_audio(self):
        # A .webm upload with audio off and the size preset
        plan = build_plan(Container.MP4, opts(include_audio=False, optimization=Optimization.TARGET_SIZE))
        self.assertEqual(plan.video_codec, "h264")
        self.assertIsNone(plan.audio_codec)
        self.assertEqual((plan.crf, plan.max_fps, plan.audio_bitrate), (35, 15, None))
        self.assertEqual(
            plan.to_args(),
            ["-c:v", "libx264", "-crf", "35", "-preset", "fast", "-fpsmax", "15", "-an"],
        )

    def test_size_with_audio(self):
        plan = build_plan(Container.MP4, opts(optimization=Optimization.TARGET_SIZE))
        self.assertEqual(plan.audio_codec, "aac")
        self.assertEqual(plan.audio_bitrate, "64k")


class BuildPlanPropertiesTests(unittest.TestCase):
    def test_deterministic_for_every_combination(self):
        for target in Container:
            for include_audio in (True, False):
                for optimization in Optimization:
                    o = opts(include_audio, optimization)
                    with self.subTest(target=target, o=o):
                        first = build_plan(target, o)
                        second = build_plan(target, ConversionOptions(include_audio, optimization))
                        self.assertEqual(first, second)
                        self.assertEqual(first.to_args(), second.to_args())

    def test_argv_wraps_plan_with_file_names(self):
        plan = build_plan(Container.WEBM, opts())
        argv = build_argv(plan, "input.mp4", "output.webm")
        self.assertEqual(argv[:2], ["-i", "input.mp4"])
        self.assertEqual(argv[-1], "output.webm")
        self.assertEqual(argv[2:-1], plan.to_args())


if __name__ == "__main__":
    unittest.main()
