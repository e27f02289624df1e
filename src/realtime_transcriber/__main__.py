import argparse
import asyncio
import logging
import shutil
import signal
import sys

from realtime_transcriber.config import TranscriberConfig
from realtime_transcriber.domain.dispatcher import EventKind
from realtime_transcriber.domain.errors import InvalidStateError, TranscriberError
from realtime_transcriber.domain.events import ClosureInfo, ErrorNotification, SessionBegins, Transcript
from realtime_transcriber.domain.session import RealtimeTranscriber

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"


def main() -> None:
    parser = argparse.ArgumentParser(description="Real-time transcription client")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--sample-rate", type=int, help="Audio sample rate in Hz")
    parser.add_argument(
        "--word-boost", action="append", metavar="WORD", help="Boost a word (repeatable)"
    )
    parser.add_argument("--token", help="Temporary token to use instead of the API key")

    subparsers = parser.add_subparsers(dest="command", required=True)

    file_parser = subparsers.add_parser("file", help="Stream a 16-bit mono WAV file")
    file_parser.add_argument("path", help="Path to the WAV file")

    subparsers.add_parser("mic", help="Stream the microphone until interrupted")

    args = parser.parse_args()

    config = TranscriberConfig()
    if args.sample_rate:
        config.sample_rate = args.sample_rate
    if args.word_boost:
        config.word_boost = args.word_boost
    if args.token:
        config.token = args.token

    _configure_logging(args.verbose, config.log_file)

    try:
        if args.command == "file":
            asyncio.run(_run_file(config, args.path))
        else:
            asyncio.run(_run_microphone(config))
    except TranscriberError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)


def _configure_logging(verbose: bool, log_file: str) -> None:
    from realtime_transcriber.log_format import ColoredFormatter

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    console = logging.StreamHandler()
    if sys.stderr.isatty():
        console.setFormatter(ColoredFormatter(datefmt=LOG_DATE_FORMAT))
    else:
        console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root.addHandler(file_handler)

    if verbose:
        logging.getLogger("websockets").setLevel(logging.INFO)


class ConsolePrinter:
    def __init__(self, live: bool) -> None:
        self._live = live

    def attach(self, transcriber: RealtimeTranscriber) -> None:
        transcriber.on(EventKind.SESSION_BEGINS, self.on_session_begins)
        transcriber.on(EventKind.PARTIAL_TRANSCRIPT, self.on_partial)
        transcriber.on(EventKind.FINAL_TRANSCRIPT, self.on_final)
        transcriber.on(EventKind.ERROR, self.on_error)
        transcriber.on(EventKind.CLOSED, self.on_closed)

    def on_session_begins(self, info: SessionBegins) -> None:
        print(f"Session begins:\n- Session ID: {info.session_id}\n- Expires at: {info.expires_at}")

    def on_partial(self, transcript: Transcript) -> None:
        if not transcript.text:
            return
        if self._live:
            self._rewrite_line(transcript.text)
        else:
            print(f"Partial transcript: {transcript.text}")

    def on_final(self, transcript: Transcript) -> None:
        if self._live:
            self._rewrite_line(transcript.text)
            print()
        else:
            print(f"Final transcript: {transcript.text}")

    def on_error(self, notification: ErrorNotification) -> None:
        print(f"Error: {notification.message}")

    def on_closed(self, info: ClosureInfo) -> None:
        if self._live:
            print()
        print(f"Closed ({info.code}{': ' + info.reason if info.reason else ''})")

    def _rewrite_line(self, text: str) -> None:
        width = shutil.get_terminal_size().columns
        print("\r" + " " * (width - 1), end="\r")
        print(text[-(width - 1):], end="", flush=True)


async def _run_file(config: TranscriberConfig, path: str) -> None:
    from realtime_transcriber.factory import create_file_source, create_transcriber
    from realtime_transcriber.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config, audio_path=path)
    if has_critical_failures(results):
        logging.error("Critical startup check failures, aborting")
        sys.exit(1)

    source = create_file_source(config, path)
    await source.start()
    try:
        transcriber = create_transcriber(config, sample_rate=source.sample_rate)
        ConsolePrinter(live=False).attach(transcriber)
        async with transcriber:
            async for chunk in source.read_chunks():
                await transcriber.send_audio(chunk)
            await transcriber.close()
    finally:
        await source.stop()


async def _run_microphone(config: TranscriberConfig) -> None:
    from realtime_transcriber.factory import create_microphone_source, create_transcriber
    from realtime_transcriber.health import has_critical_failures, run_startup_checks

    results = run_startup_checks(config)
    if has_critical_failures(results):
        logging.error("Critical startup check failures, aborting")
        sys.exit(1)

    source = create_microphone_source(config)
    transcriber = create_transcriber(config)
    ConsolePrinter(live=True).attach(transcriber)

    stop_event = asyncio.Event()
    stop_requested = False

    def handle_signal() -> None:
        nonlocal stop_requested
        if stop_requested:
            logging.warning("Forced exit")
            sys.exit(1)
        stop_requested = True
        logging.info("Stopping, waiting for final transcripts...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    async def stream_microphone() -> None:
        async for chunk in source.read_chunks():
            await transcriber.send_audio(chunk)

    async with transcriber:
        await source.start()
        print("Press Ctrl+C to stop.")
        stream_task = asyncio.create_task(stream_microphone())
        stop_task = asyncio.create_task(stop_event.wait())
        watched = {stream_task, stop_task}
        if transcriber.listener_task is not None:
            watched.add(transcriber.listener_task)
        try:
            await asyncio.wait(watched, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_task.cancel()
            await source.stop()
            stream_task.cancel()
            await asyncio.wait({stream_task})

        await transcriber.close()
        # Sends that raced the service closing the session fail with InvalidStateError.
        error = None if stream_task.cancelled() else stream_task.exception()
        if error is not None and not isinstance(error, InvalidStateError):
            raise error


if __name__ == "__main__":
    main()
