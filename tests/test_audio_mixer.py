"""
Tests for the export audio mix stage.

Test cases:
1. Master audio passes through when there is no music
2. Music clips are delayed to their timeline position
3. Volume and mute handling per track and clip
4. Missing or silent music media
"""

import pytest

from factories import audio_source, make_clip, video_source
from reel_render.exceptions import InputResolutionError, MediaNotFoundError
from reel_render.render.audio_mixer import (
    AudioClipData,
    AudioMixStage,
    AudioTrackData,
    collect_audio_tracks,
    delay_ms,
)
from reel_render.render.clip_graph import RenderConfig
from reel_render.render.graph import Filter, FilterGraph
from reel_render.schemas.timeline import Track


@pytest.fixture
def graph_with_master():
    graph = FilterGraph()
    graph.add_input("/media/video.mp4")
    master = graph.chain([graph.input_stream(0, "audio")], [Filter.of("anull")], "a_final")
    return graph, master


def music_track(track_id="music", volume=1.0, is_muted=False, clips=None):
    return Track(
        id=track_id,
        type="audio",
        volume=volume,
        is_muted=is_muted,
        clips=clips if clips is not None else [make_clip("m0", 0, 30, media_file_id="song")],
    )


class TestCollectAudioTracks:
    def test_volume_is_track_times_clip(self):
        track = music_track(volume=0.5, clips=[make_clip("m0", 0, 10, media_file_id="song", volume=0.6)])
        (data,) = collect_audio_tracks([track], {"song": audio_source()})
        assert data.clips[0].volume == pytest.approx(0.3)

    def test_muted_track_dropped(self):
        assert collect_audio_tracks([music_track(is_muted=True)], {"song": audio_source()}) == []

    def test_muted_clip_kept_at_zero_volume(self):
        track = music_track(clips=[make_clip("m0", 0, 10, media_file_id="song", is_muted=True)])
        (data,) = collect_audio_tracks([track], {"song": audio_source()})
        assert data.clips[0].volume == 0.0

    def test_clips_ordered_by_timeline_start(self):
        track = music_track(
            clips=[
                make_clip("late", 0, 2, timeline_start=10, media_file_id="song"),
                make_clip("early", 0, 2, timeline_start=1, media_file_id="song"),
            ]
        )
        (data,) = collect_audio_tracks([track], {"song": audio_source()})
        assert [c.clip_id for c in data.clips] == ["early", "late"]

    def test_missing_media_is_fatal(self):
        with pytest.raises(MediaNotFoundError, match="song"):
            collect_audio_tracks([music_track()], {})

    def test_media_without_audio_rejected(self):
        with pytest.raises(InputResolutionError):
            collect_audio_tracks([music_track()], {"song": video_source(has_audio=False)})

    def test_delay_is_rounded_milliseconds(self):
        assert delay_ms(2.5) == 2500
        assert delay_ms(0.1234) == 123


class TestAudioMixStage:
    def test_master_only_uses_anull(self, graph_with_master):
        graph, master = graph_with_master
        mixed = AudioMixStage(graph, RenderConfig()).build(master, [])

        assert mixed.label == "a_mixed"
        assert graph.chains[-1].render() == "[a_final]anull[a_mixed]"

    def test_music_clip_chain(self, graph_with_master):
        graph, master = graph_with_master
        track = AudioTrackData(
            track_id="music",
            clips=[AudioClipData("m0", "/media/song.mp3", source_start=4.0, duration=10.0, delay_ms=2500, volume=0.5)],
        )
        AudioMixStage(graph, RenderConfig()).build(master, [track])

        rendered = [c.render() for c in graph.chains]
        assert (
            "[1:a]atrim=start=4:duration=10,asetpts=PTS-STARTPTS,adelay=2500|2500,volume=0.5,aresample=48000[music0]"
            in rendered
        )
        assert rendered[-1] == "[a_final][music0]amix=inputs=2:duration=shortest:dropout_transition=2[a_mixed]"

    def test_music_inputs_appended_after_existing_inputs(self, graph_with_master):
        graph, master = graph_with_master
        track = AudioTrackData(
            track_id="music",
            clips=[
                AudioClipData("m0", "/media/a.mp3", 0, 5, 0),
                AudioClipData("m1", "/media/b.mp3", 0, 5, 5000),
            ],
        )
        AudioMixStage(graph, RenderConfig()).build(master, [track])

        assert [i.path for i in graph.inputs] == ["/media/video.mp4", "/media/a.mp3", "/media/b.mp3"]
        assert graph.chains[-1].render().startswith("[a_final][music0][music1]amix=inputs=3")

    def test_amix_duration_is_configurable(self, graph_with_master):
        graph, master = graph_with_master
        track = AudioTrackData(track_id="music", clips=[AudioClipData("m0", "/media/a.mp3", 0, 5, 0)])
        AudioMixStage(graph, RenderConfig(amix_duration="first")).build(master, [track])
        assert "duration=first" in graph.chains[-1].render()
