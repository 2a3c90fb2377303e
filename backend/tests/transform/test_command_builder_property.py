"""Property-based tests for the ffmpeg command builder."""

import pytest
from hypothesis import given, settings, strategies as st

from video_remix.modules.transform.ffmpeg import (
    CommandSpec,
    TransformCommandBuilder,
    escape_drawtext,
    visual_filter_chain,
    watermark_filter,
)
from video_remix.modules.transform.models import FilterChainMode, LatencyMode
from video_remix.modules.transform.exceptions import ValidationError
from video_remix.modules.transform.schemas import TransformRequest, parse_transform_request

INPUT = "temp_uploads/input_abc.mov"
OUTPUT = "temp_uploads/output_def.mp4"

FIXED_VISUAL_CHAIN = (
    "colorchannelmixer=rr=0.9:gg=0.9:bb=0.9,"
    "hue=h=5:s=1.1,"
    "eq=contrast=1.1:brightness=0.02"
)
WATERMARK = "drawtext=text='UserContent':x=10:y=H-th-10:fontsize=24:fontcolor=white@0.5"

positive_factor = st.floats(
    min_value=0.01,
    max_value=100.0,
    allow_nan=False,
    allow_infinity=False,
)

request_strategy = st.builds(
    TransformRequest,
    speed_factor=positive_factor,
    pitch_factor=positive_factor,
    add_watermark=st.booleans(),
    add_filters=st.booleans(),
    change_aspect=st.booleans(),
)


def make_request(**overrides) -> TransformRequest:
    values = {
        "speed_factor": 1.0,
        "pitch_factor": 1.0,
        "add_watermark": False,
        "add_filters": False,
        "change_aspect": False,
    }
    values.update(overrides)
    return TransformRequest(**values)


def values_of(spec: CommandSpec, option: str) -> list[str]:
    args = spec.args
    return [args[i + 1] for i, arg in enumerate(args[:-1]) if arg == option]


class TestTimingFilters:
    """Speed and pitch are substituted verbatim into the filter graph."""

    @given(speed=positive_factor, pitch=positive_factor)
    @settings(max_examples=100)
    def test_timing_filters_use_exact_values(self, speed: float, pitch: float) -> None:
        spec = TransformCommandBuilder().build(
            make_request(speed_factor=speed, pitch_factor=pitch), INPUT, OUTPUT
        )
        graph = values_of(spec, "-filter_complex")

        assert len(graph) == 1
        assert f"setpts={1 / speed}*PTS" in graph[0]
        assert f"atempo={speed}" in graph[0]
        assert f"asetrate=44100*{pitch}" in graph[0]

    def test_filter_complex_layout(self) -> None:
        spec = TransformCommandBuilder().build(
            make_request(speed_factor=2.0, pitch_factor=1.0), INPUT, OUTPUT
        )

        assert values_of(spec, "-filter_complex") == [
            "[0:v]setpts=0.5*PTS;[0:a]atempo=2.0,asetrate=44100*1.0[a]"
        ]

    @given(params=request_strategy)
    @settings(max_examples=100)
    def test_build_is_deterministic(self, params: TransformRequest) -> None:
        builder = TransformCommandBuilder()

        assert builder.build(params, INPUT, OUTPUT) == builder.build(params, INPUT, OUTPUT)


class TestVisualOptions:
    """Filter, watermark and aspect toggles."""

    def test_filters_only_adds_fixed_chain_without_watermark(self) -> None:
        spec = TransformCommandBuilder().build(make_request(add_filters=True), INPUT, OUTPUT)

        assert values_of(spec, "-vf") == [FIXED_VISUAL_CHAIN]
        assert not any("drawtext" in arg or "UserContent" in arg for arg in spec)
        assert "-aspect" not in spec.args

    def test_all_toggles_off_has_no_video_options(self) -> None:
        spec = TransformCommandBuilder().build(make_request(), INPUT, OUTPUT)

        assert "-vf" not in spec.args
        assert "-aspect" not in spec.args

    def test_aspect_sets_display_ratio_only(self) -> None:
        spec = TransformCommandBuilder().build(make_request(change_aspect=True), INPUT, OUTPUT)

        assert values_of(spec, "-aspect") == ["16:9"]
        assert "-vf" not in spec.args

    def test_watermark_only(self) -> None:
        spec = TransformCommandBuilder().build(make_request(add_watermark=True), INPUT, OUTPUT)

        assert values_of(spec, "-vf") == [WATERMARK]

    def test_merge_mode_combines_chains_into_one_graph(self) -> None:
        builder = TransformCommandBuilder(filter_chain_mode=FilterChainMode.MERGE)
        spec = builder.build(
            make_request(add_filters=True, add_watermark=True, change_aspect=True), INPUT, OUTPUT
        )

        assert values_of(spec, "-vf") == [f"{FIXED_VISUAL_CHAIN},{WATERMARK}"]
        assert values_of(spec, "-aspect") == ["16:9"]

    def test_last_wins_mode_keeps_separate_chains_in_order(self) -> None:
        builder = TransformCommandBuilder(filter_chain_mode=FilterChainMode.LAST_WINS)
        spec = builder.build(
            make_request(add_filters=True, add_watermark=True, change_aspect=True), INPUT, OUTPUT
        )
        args = list(spec.args)

        assert values_of(spec, "-vf") == [FIXED_VISUAL_CHAIN, WATERMARK]
        assert args.index("-vf") < args.index("-aspect") < len(args) - 1 - args[::-1].index("-vf")

    @given(params=request_strategy)
    @settings(max_examples=100)
    def test_merge_mode_never_emits_more_than_one_chain(self, params: TransformRequest) -> None:
        spec = TransformCommandBuilder(filter_chain_mode=FilterChainMode.MERGE).build(
            params, INPUT, OUTPUT
        )

        assert len(values_of(spec, "-vf")) == (1 if params.add_filters or params.add_watermark else 0)

    def test_watermark_text_is_escaped(self) -> None:
        assert escape_drawtext("it's 100%") == "it'\\''s 100\\%"
        assert watermark_filter("a'b").startswith("drawtext=text='a'\\''b'")

    def test_visual_chain_constant(self) -> None:
        assert visual_filter_chain() == FIXED_VISUAL_CHAIN


class TestInvocationLayout:
    """Input, mapping and encoder settings."""

    @given(params=request_strategy)
    @settings(max_examples=50)
    def test_paths_and_output_stage(self, params: TransformRequest) -> None:
        spec = TransformCommandBuilder(ffmpeg_path="/usr/bin/ffmpeg").build(params, INPUT, OUTPUT)
        args = spec.args

        assert spec.program == "/usr/bin/ffmpeg"
        assert args[1:4] == ("-y", "-i", INPUT)
        assert args[-1] == OUTPUT
        assert values_of(spec, "-map") == ["0:v", "[a]"]
        assert values_of(spec, "-c:v") == ["libx264"]
        assert values_of(spec, "-crf") == ["23"]
        assert values_of(spec, "-c:a") == ["aac"]
        assert values_of(spec, "-strict") == ["experimental"]

    def test_default_latency_mode_uses_fast_preset(self) -> None:
        spec = TransformCommandBuilder().build(make_request(), INPUT, OUTPUT)

        assert values_of(spec, "-preset") == ["fast"]

    def test_latency_mode_selects_preset(self) -> None:
        normal = TransformCommandBuilder(latency_mode=LatencyMode.NORMAL)
        ultra = TransformCommandBuilder(latency_mode=LatencyMode.ULTRA_LOW)

        assert normal.preset == "medium"
        assert ultra.preset == "ultrafast"

    def test_paths_with_spaces_stay_single_arguments(self) -> None:
        spec = TransformCommandBuilder().build(
            make_request(), "dir with space/in put.mov", "dir with space/out put.mp4"
        )

        assert "dir with space/in put.mov" in spec.args
        assert spec.args[-1] == "dir with space/out put.mp4"
        assert "'dir with space/in put.mov'" in str(spec)


class TestSpeedBounds:
    """Every accepted speed yields a finite retiming factor."""

    def test_subnormal_speed_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="speed_factor"):
            parse_transform_request(speed_factor=1e-310, pitch_factor=1.0)

    @given(
        speed=st.floats(min_value=0.0, exclude_min=True, max_value=1e-300, allow_nan=False),
    )
    @settings(max_examples=200)
    def test_accepted_speed_never_renders_infinity(self, speed: float) -> None:
        try:
            params = parse_transform_request(speed_factor=speed, pitch_factor=1.0)
        except ValidationError:
            return

        graph = values_of(TransformCommandBuilder().build(params, INPUT, OUTPUT), "-filter_complex")[0]
        assert "inf" not in graph
