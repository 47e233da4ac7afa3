#!/usr/bin/env python3
"""
DCA command line entry point.

Wraps ffmpeg and writes a DCA stream (optional metadata prologue, then
int16 length-prefixed Opus frames) to stdout:

    python3 -m dca -i song.mp3 > song.dca
    cat song.ogg | python3 -m dca -raw > song.dca
"""

import argparse
import logging
import os
import sys

from dca.config import DcaConfig
from dca.encoder.encode_session import PIPE_INPUT, EncodeSession
from dca.encoder.options import STD_ENCODE_OPTIONS, AudioApplication, EncodeOptions
from dca.errors import EndOfStream, ValidationError

logger = logging.getLogger("dca")


def build_parser(config: DcaConfig) -> argparse.ArgumentParser:
    std = STD_ENCODE_OPTIONS
    parser = argparse.ArgumentParser(prog="dca", description="Encode audio to a DCA Opus frame stream on stdout")
    parser.add_argument("input", nargs="?", help="input file (same as -i)")
    parser.add_argument("-i", dest="infile", default=PIPE_INPUT, help="infile (default: stdin)")
    parser.add_argument("-vol", dest="volume", type=int, default=std.volume, help="change audio volume (256=normal)")
    parser.add_argument("-ac", dest="channels", type=int, default=std.channels, help="audio channels")
    parser.add_argument("-ar", dest="frame_rate", type=int, default=std.frame_rate, help="audio sampling rate")
    parser.add_argument(
        "-as", dest="frame_duration", type=int, default=std.frame_duration,
        help="audio frame duration can be 20, 40, or 60 (ms)",
    )
    parser.add_argument("-ab", dest="bitrate", type=int, default=std.bitrate, help="audio encoding bitrate in kb/s")
    parser.add_argument(
        "-aa", dest="application", default=std.application.value,
        choices=[a.value for a in AudioApplication],
        help="audio application can be voip, audio, or lowdelay",
    )
    parser.add_argument("-raw", dest="raw_output", action="store_true", help="raw opus output (no metadata or magic bytes)")
    parser.add_argument(
        "-cl", dest="compression_level", type=int, default=std.compression_level,
        help="compression level, higher is better quality but slower (0-10)",
    )
    parser.add_argument("-pl", dest="packet_loss", type=int, default=std.packet_loss, help="expected packet loss percentage")
    parser.add_argument("-vbr", dest="vbr", action="store_true", default=std.vbr, help="variable bitrate (default)")
    parser.add_argument("-novbr", dest="vbr", action="store_false", help="constant bitrate")
    parser.add_argument(
        "-buf", dest="buffered_frames", type=int, default=config.buffered_frames,
        help="how many frames to buffer ahead of stdout",
    )
    parser.add_argument("-comment", dest="comment", default="", help="leave a comment in the metadata")
    parser.add_argument("--log-level", dest="log_level", default=config.log_level, help="stderr log level")
    return parser


def options_from_args(args: argparse.Namespace) -> EncodeOptions:
    return EncodeOptions(
        volume=args.volume,
        channels=args.channels,
        frame_rate=args.frame_rate,
        frame_duration=args.frame_duration,
        bitrate=args.bitrate,
        packet_loss=args.packet_loss,
        raw_output=args.raw_output,
        application=AudioApplication(args.application),
        compression_level=args.compression_level,
        buffered_frames=args.buffered_frames,
        vbr=args.vbr,
        comment=args.comment,
    )


def _discard_stdout() -> None:
    # The interpreter flushes stdout again at exit; point the fd at devnull so that flush cannot fail
    devnull = os.open(os.devnull, os.O_WRONLY)
    try:
        os.dup2(devnull, sys.stdout.fileno())
    except (OSError, ValueError) as e:
        logger.debug(f"stdout has no file descriptor to redirect: {e}")
    finally:
        os.close(devnull)


def main(argv=None) -> int:
    config = DcaConfig.load_config()
    args = build_parser(config).parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    infile = args.input if args.input else args.infile

    if infile != PIPE_INPUT and "://" not in infile and not os.path.exists(infile):
        logger.error(f"infile does not exist: {infile}")
        return 1

    if infile == PIPE_INPUT and sys.stdin.isatty():
        logger.error("stdin is not a pipe")
        return 1

    try:
        options = options_from_args(args)
        if infile == PIPE_INPUT:
            session = EncodeSession(options, pipe_reader=sys.stdin.buffer, config=config)
        else:
            session = EncodeSession(options, file_path=infile, config=config)
    except ValidationError as e:
        logger.error(f"Invalid options: {e}")
        return 1

    output = sys.stdout.buffer
    try:
        while True:
            try:
                frame = session.read_frame()
            except EndOfStream:
                break
            output.write(frame)
        output.flush()
    except BrokenPipeError:
        logger.info("stdout closed, stopping")
        session.truncate()
        _discard_stdout()
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping")
        session.truncate()
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
