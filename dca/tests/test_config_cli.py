"""
Tests for DcaConfig loading and the command line entry point.
"""

import io
import sys
from unittest.mock import Mock, patch

import pytest

from dca.__main__ import build_parser, main, options_from_args
from dca.audio.wire import decode_frame, decode_prologue
from dca.config import DcaConfig
from dca.encoder.options import AudioApplication
from dca.tests.doubles import OPUS_HEAD, OPUS_TAGS, FakeProcess, PopenFactory, ogg_opus_stream, opus_packet

DCA_VARS = (
    "DCA_ENV_FILE",
    "DCA_FFMPEG_BIN",
    "DCA_FFPROBE_BIN",
    "DCA_PROBE_TIMEOUT_SEC",
    "DCA_EXTRACT_COVER",
    "DCA_BUFFERED_FRAMES",
    "DCA_SINK_TIMEOUT_MS",
    "DCA_LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in DCA_VARS:
        monkeypatch.delenv(name, raising=False)
    # Point at a file that does not exist so /etc/dca/dca.env is never read
    monkeypatch.setenv("DCA_ENV_FILE", str(tmp_path / "missing.env"))
    return monkeypatch


class TestDcaConfig:
    def test_defaults(self, clean_env):
        """With no environment the built-in defaults apply."""
        config = DcaConfig.load_config()
        assert config.ffmpeg_bin == "ffmpeg"
        assert config.ffprobe_bin == "ffprobe"
        assert config.probe_timeout_sec == 30.0
        assert config.extract_cover is True
        assert config.buffered_frames == 100
        assert config.sink_timeout_ms == 1000
        assert config.sink_timeout_sec == 1.0
        assert config.log_level == "INFO"

    def test_environment_overrides(self, clean_env):
        """DCA_* variables override the defaults."""
        clean_env.setenv("DCA_FFMPEG_BIN", "/opt/ffmpeg")
        clean_env.setenv("DCA_EXTRACT_COVER", "no")
        clean_env.setenv("DCA_BUFFERED_FRAMES", "25")
        clean_env.setenv("DCA_SINK_TIMEOUT_MS", "200")
        clean_env.setenv("DCA_LOG_LEVEL", "debug")
        config = DcaConfig.load_config()
        assert config.ffmpeg_bin == "/opt/ffmpeg"
        assert config.extract_cover is False
        assert config.buffered_frames == 25
        assert config.sink_timeout_sec == pytest.approx(0.2)
        assert config.log_level == "DEBUG"

    def test_env_file_is_loaded(self, clean_env, tmp_path):
        """Values are read from the file named by DCA_ENV_FILE."""
        env_file = tmp_path / "dca.env"
        env_file.write_text("DCA_FFPROBE_BIN=/srv/ffprobe\nDCA_PROBE_TIMEOUT_SEC=2.5\n")
        clean_env.setenv("DCA_ENV_FILE", str(env_file))
        # load_dotenv writes into os.environ; register the keys so monkeypatch restores them
        clean_env.setenv("DCA_FFPROBE_BIN", "")
        clean_env.delenv("DCA_FFPROBE_BIN")
        clean_env.setenv("DCA_PROBE_TIMEOUT_SEC", "")
        clean_env.delenv("DCA_PROBE_TIMEOUT_SEC")
        config = DcaConfig.load_config()
        assert config.ffprobe_bin == "/srv/ffprobe"
        assert config.probe_timeout_sec == 2.5

    def test_environment_wins_over_env_file(self, clean_env, tmp_path):
        """A variable already in the environment beats the env file."""
        env_file = tmp_path / "dca.env"
        env_file.write_text("DCA_FFMPEG_BIN=/from/file\n")
        clean_env.setenv("DCA_ENV_FILE", str(env_file))
        clean_env.setenv("DCA_FFMPEG_BIN", "/from/env")
        assert DcaConfig.load_config().ffmpeg_bin == "/from/env"

    @pytest.mark.parametrize("name,value", [
        ("DCA_BUFFERED_FRAMES", "lots"),
        ("DCA_BUFFERED_FRAMES", "0"),
        ("DCA_SINK_TIMEOUT_MS", "-5"),
        ("DCA_PROBE_TIMEOUT_SEC", "soon"),
        ("DCA_EXTRACT_COVER", "maybe"),
    ])
    def test_invalid_values_name_the_variable(self, clean_env, name, value):
        """A bad value raises ValueError naming its variable."""
        clean_env.setenv(name, value)
        with pytest.raises(ValueError, match=name):
            DcaConfig.load_config()


class TestArgumentParsing:
    def test_defaults_match_standard_options(self):
        """No flags gives the standard options reading from stdin."""
        args = build_parser(DcaConfig()).parse_args([])
        opts = options_from_args(args)
        opts.validate()
        assert opts.bitrate == 64
        assert opts.application == AudioApplication.AUDIO
        assert opts.vbr is True
        assert opts.raw_output is False
        assert args.infile == "pipe:0"

    def test_flags(self):
        """Every flag maps onto its encode option."""
        args = build_parser(DcaConfig()).parse_args([
            "-i", "in.flac", "-vol", "128", "-ac", "1", "-ar", "24000", "-as", "40", "-ab", "96",
            "-aa", "voip", "-raw", "-cl", "5", "-pl", "10", "-novbr", "-buf", "50", "-comment", "hello",
        ])
        opts = options_from_args(args)
        assert args.infile == "in.flac"
        assert (opts.volume, opts.channels, opts.frame_rate, opts.frame_duration) == (128, 1, 24000, 40)
        assert (opts.bitrate, opts.compression_level, opts.packet_loss) == (96, 5, 10)
        assert opts.application == AudioApplication.VOIP
        assert opts.raw_output is True
        assert opts.vbr is False
        assert opts.buffered_frames == 50
        assert opts.comment == "hello"

    def test_unknown_application_is_rejected(self):
        """An unknown -aa value is a usage error."""
        with pytest.raises(SystemExit):
            build_parser(DcaConfig()).parse_args(["-aa", "music"])


class TestMain:
    @pytest.fixture
    def stdout(self, monkeypatch):
        wrapper = io.TextIOWrapper(io.BytesIO())
        monkeypatch.setattr(sys, "stdout", wrapper)
        return wrapper.buffer

    def test_missing_input_file(self, clean_env, tmp_path, stdout):
        """A missing input file exits 1 with nothing written."""
        assert main([str(tmp_path / "nope.mp3")]) == 1
        assert stdout.getvalue() == b""

    def test_invalid_options(self, clean_env, tmp_path, stdout):
        """Invalid options exit 1 before ffmpeg is started."""
        song = tmp_path / "song.mp3"
        song.write_bytes(b"ID3")
        with patch("dca.encoder.encode_session.subprocess.Popen") as popen:
            assert main(["-as", "25", str(song)]) == 1
        popen.assert_not_called()

    def test_raw_encode_to_stdout(self, clean_env, tmp_path, stdout):
        """-raw writes bare frames for every packet to stdout."""
        song = tmp_path / "song.mp3"
        song.write_bytes(b"ID3")
        packets = [opus_packet(i) for i in range(5)]
        factory = PopenFactory(FakeProcess(stdout=ogg_opus_stream(packets)))
        with patch("dca.encoder.encode_session.subprocess.Popen", side_effect=factory):
            assert main(["-raw", "-i", str(song)]) == 0

        out = io.BytesIO(stdout.getvalue())
        assert [decode_frame(out) for _ in range(7)] == [OPUS_HEAD, OPUS_TAGS] + packets
        assert out.read() == b""
        assert factory.calls[0][factory.calls[0].index("-i") + 1] == str(song)

    def test_pipe_input_with_metadata(self, clean_env, stdout, monkeypatch):
        """Piped input writes a prologue carrying the comment, then frames."""
        stdin = io.TextIOWrapper(io.BytesIO(b"\x00" * 1024))
        monkeypatch.setattr(sys, "stdin", stdin)
        factory = PopenFactory(FakeProcess(stdout=ogg_opus_stream([opus_packet(0)])))
        with patch("dca.encoder.encode_session.subprocess.Popen", side_effect=factory):
            assert main(["-comment", "from cli"]) == 0

        out = io.BytesIO(stdout.getvalue())
        _, metadata = decode_prologue(out)
        assert metadata.origin.source == "pipe"
        assert metadata.song_info.comments == "from cli"
        assert [decode_frame(out) for _ in range(3)] == [OPUS_HEAD, OPUS_TAGS, opus_packet(0)]

    def test_closed_stdout_stops_encoder_and_discards_output(self, clean_env, tmp_path, monkeypatch):
        """A reader closing stdout kills ffmpeg and points stdout at devnull for the exit flush."""
        song = tmp_path / "song.mp3"
        song.write_bytes(b"ID3")
        broken = Mock()
        broken.buffer.write.side_effect = BrokenPipeError()
        broken.fileno.return_value = 17
        monkeypatch.setattr(sys, "stdout", broken)

        process = FakeProcess(endless=True)
        with patch("dca.encoder.encode_session.subprocess.Popen", side_effect=PopenFactory(process)), \
                patch("dca.__main__.os.dup2") as dup2:
            assert main(["-raw", "-i", str(song)]) == 1

        assert process.killed
        dup2.assert_called_once()
        assert dup2.call_args[0][1] == 17
