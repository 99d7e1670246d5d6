#!/usr/bin/env python3
"""
sasswatch.py - Sass/SCSS Watcher and Compiler

Recompiles a CSS file whenever the Sass/SCSS input file, or any other style
file in the directory tree the input lives in, is created, modified or deleted.
Optionally minifies the output and writes a source map next to it.

Usage:
    python sasswatch.py [-s] [-c] [-m] [--debounce SECONDS] <inputfile> <outputfile>
"""

import sys
import threading
import argparse
from enum import Enum
from pathlib import Path
from typing import Callable, Optional
from datetime import datetime
from dataclasses import dataclass

import sass
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileSystemEvent

from rich.console import Console
from rich.text import Text
from rich.style import Style


__version__ = "1.0.0"

# --- Configuration ---
PROG = "sasswatch"
STYLE_EXTENSIONS = (".scss", ".sass")
DEFAULT_DEBOUNCE = 0.0  # Seconds; 0 rebuilds on every event
ENCODING = "utf-8"
EXAMPLES = """\
examples:
  $ sasswatch ./scss/index.scss ./css/index.css
  $ sasswatch -s -c index.scss ../css/index.css
"""


# --- Styles ---
STYLE_TIMESTAMP = Style(color="magenta")
STYLE_PATH = Style(color="cyan")
STYLE_TARGET = Style(color="cyan", bold=True)
STYLE_HEADER = Style(color="white", bold=True)
STYLE_CREATED = Style(color="green", bold=True)
STYLE_MODIFIED = Style(color="yellow", bold=True)
STYLE_DELETED = Style(color="red", bold=True)
STYLE_ENABLED = Style(color="green")
STYLE_DISABLED = Style(color="red")
STYLE_ERROR = Style(color="red", bold=True)
STYLE_SUCCESS = Style(color="green", bold=True)

COMPILE_ON_RUN = "compile on run"


# --- Errors ---
class SassWatchError(Exception):
    """Base class for all errors raised by the watcher."""


class StartupError(SassWatchError):
    """The watcher could not be started. Always fatal."""

    def __init__(self, message: str, failures: Optional[list[tuple[str, str]]] = None):
        self.failures = list(failures or [])
        if self.failures:
            details = "; ".join(f"{path}: {reason}" for path, reason in self.failures)
            message = f"{message} ({details})"
        super().__init__(message)


class ReadError(SassWatchError):
    """The input file could not be read when a rebuild started."""


class CompileError(SassWatchError):
    """The Sass compiler rejected the input."""


class WriteError(SassWatchError):
    """An output file could not be written."""


# --- Data model ---
@dataclass(frozen=True)
class WatchConfig:
    """Settings resolved once at startup and shared by every component."""

    input_path: Path
    output_path: Path
    source_map: bool = False
    compile_on_start: bool = False
    minify: bool = False
    debounce: float = DEFAULT_DEBOUNCE
    extensions: tuple[str, ...] = STYLE_EXTENSIONS

    @property
    def watch_root(self) -> Path:
        return self.input_path.resolve().parent

    @property
    def map_path(self) -> Path:
        return self.output_path.with_name(self.output_path.name + ".map")

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "WatchConfig":
        return cls(
            input_path=Path(args.inputfile),
            output_path=Path(args.outputfile),
            source_map=args.source_map,
            compile_on_start=args.compile,
            minify=args.minify,
            debounce=args.debounce,
        )


class EventKind(Enum):
    CREATED = "file created"
    CHANGED = "file changed"
    DELETED = "file deleted"

    @property
    def label(self) -> str:
        return self.value


EVENT_STYLES = {
    EventKind.CREATED: STYLE_CREATED,
    EventKind.CHANGED: STYLE_MODIFIED,
    EventKind.DELETED: STYLE_DELETED,
}


@dataclass(frozen=True)
class ChangeEvent:
    kind: EventKind
    path: Path


@dataclass(frozen=True)
class RebuildResult:
    css: str
    source_map: Optional[str] = None


# --- Reporter ---
def timestamp(now: Optional[datetime] = None) -> str:
    """Format a time of day as ``h:mm:ssam``, e.g. ``3:07:21pm``."""
    now = now or datetime.now()
    hour = now.hour % 12 or 12
    suffix = "am" if now.hour < 12 else "pm"
    return f"{hour}:{now:%M:%S}{suffix}"


def relative_to_root(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


class Reporter:
    """Prints timestamped status lines to the console."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(highlight=False)

    def log(self, message: Text | str) -> None:
        line = Text()
        line.append(timestamp(), style=STYLE_TIMESTAMP)
        line.append(" ")
        line.append(message)
        self.console.print(line, soft_wrap=True)

    def _flag(self, enabled: bool) -> Text:
        if enabled:
            return Text("enabled", style=STYLE_ENABLED)
        return Text("disabled", style=STYLE_DISABLED)

    def _row(self, key: str, value: Text) -> None:
        line = Text(f"{key:>14}: ")
        line.append(value)
        self.log(line)

    def show_options(self, config: WatchConfig) -> None:
        """Show the resolved configuration at startup."""
        self._row("input file", Text(str(config.input_path), style=STYLE_PATH))
        self._row("watching", Text(str(config.input_path.parent), style=STYLE_PATH))
        self._row("compile to", Text(str(config.output_path), style=STYLE_TARGET))
        self._row("source map", self._flag(config.source_map))
        self._row("compile on run", self._flag(config.compile_on_start))
        self._row("minify", self._flag(config.minify))
        if config.debounce > 0:
            self._row("debounce", Text(f"{config.debounce:g}s", style=STYLE_PATH))

    def started(self) -> None:
        self.log("---")
        self.log(Text(f"{PROG} started", style=STYLE_HEADER))
        self.log("---")

    def _event_text(self, config: WatchConfig, event: Optional[ChangeEvent]) -> Text:
        if event is None:
            return Text(COMPILE_ON_RUN, style=STYLE_SUCCESS)
        text = Text(event.kind.label, style=EVENT_STYLES[event.kind])
        text.append(": ")
        text.append(relative_to_root(event.path, config.watch_root), style=STYLE_PATH)
        return text

    def rebuild_started(self, config: WatchConfig, event: Optional[ChangeEvent]) -> None:
        line = Text()
        line.append(str(config.input_path), style=STYLE_PATH)
        line.append(" -> ")
        line.append(str(config.output_path), style=STYLE_TARGET)
        if config.source_map:
            line.append(", ")
            line.append(str(config.map_path), style=STYLE_TARGET)
        line.append(" [")
        line.append(self._event_text(config, event))
        line.append("]")
        self.log(line)

    def done(self) -> None:
        self.log("done")

    def error(self, exc: BaseException, config: Optional[WatchConfig] = None,
              event: Optional[ChangeEvent] = None) -> None:
        line = Text("Error", style=STYLE_ERROR)
        if config is not None:
            line.append(" [")
            line.append(self._event_text(config, event))
            line.append("]")
        line.append(": ", style=STYLE_ERROR)
        # Compiler messages span several lines
        line.append(str(exc).rstrip())
        self.log(line)


# --- Compiler ---
def _compile_options(config: WatchConfig, output_style: str) -> dict:
    """Keyword arguments for a source-map producing, file based compile."""
    # libsass only emits source maps when it compiles from a filename
    return dict(
        filename=str(config.input_path),
        output_style=output_style,
        include_paths=[str(config.watch_root)],
        source_map_filename=str(config.map_path),
        output_filename_hint=str(config.output_path),
        source_map_contents=True,
        omit_source_map_url=True,
    )


def compile_source(config: WatchConfig, source: str) -> RebuildResult:
    """Compile the input text to CSS, with a source map if one was asked for.

    In source map mode libsass re-reads the input itself, and when minifying
    renders compressed output in the same pass so the map points from the
    minified CSS straight back to the original sources. ``source`` has still
    been read by the caller so an unreadable input fails before compiling.
    """
    try:
        if config.source_map:
            output_style = "compressed" if config.minify else "expanded"
            css, source_map = sass.compile(**_compile_options(config, output_style))
            return RebuildResult(css, source_map)
        css = sass.compile(
            string=source,
            output_style="expanded",
            include_paths=[str(config.watch_root)],
            indented=config.input_path.suffix.lower() == ".sass",
        )
    except sass.CompileError as e:
        raise CompileError(str(e)) from e
    except OSError as e:
        # Input removed between the read and the compile
        raise ReadError(f"could not read {config.input_path}: {e}") from e
    return RebuildResult(css)


def minify_result(result: RebuildResult) -> RebuildResult:
    """Compress compiled CSS that has no source map attached."""
    try:
        css = sass.compile(string=result.css, output_style="compressed")
    except sass.CompileError as e:
        raise CompileError(str(e)) from e
    return RebuildResult(css)


def write_text(path: Path, text: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding=ENCODING)
    except OSError as e:
        raise WriteError(f"could not write {path}: {e}") from e


def rebuild(
    config: WatchConfig,
    trigger: Optional[ChangeEvent] = None,
    reporter: Optional[Reporter] = None,
) -> RebuildResult:
    """Read, compile, optionally minify, and write the output file(s).

    Each step depends on the previous one. Errors propagate to the caller and
    nothing is written when reading or compiling fails.
    """
    if reporter:
        reporter.rebuild_started(config, trigger)

    try:
        source = config.input_path.read_text(encoding=ENCODING)
    except (OSError, UnicodeDecodeError) as e:
        raise ReadError(f"could not read {config.input_path}: {e}") from e

    result = compile_source(config, source)
    if config.minify and not config.source_map:
        result = minify_result(result)

    css = result.css
    if config.source_map:
        css = css.rstrip("\n") + f"\n/*# sourceMappingURL={config.output_path.name}.map */"
        write_text(config.map_path, result.source_map or "")
    write_text(config.output_path, css)

    if reporter:
        reporter.done()
    return RebuildResult(css, result.source_map)


# --- Event Handler ---
def is_style_file(path: Path | str, extensions: tuple[str, ...] = STYLE_EXTENSIONS) -> bool:
    """Check if a path is a qualifying style file."""
    return str(path).lower().endswith(extensions)


class StyleHandler(FileSystemEventHandler):
    """Turns watchdog events for style files into ChangeEvents.

    With a debounce window, a burst of events collapses into a single call
    carrying the last event of the burst.
    """

    def __init__(
        self,
        on_event: Callable[[ChangeEvent], None],
        extensions: tuple[str, ...] = STYLE_EXTENSIONS,
        debounce: float = DEFAULT_DEBOUNCE,
    ):
        super().__init__()
        self.on_event = on_event
        self.extensions = extensions
        self.debounce = debounce

        self._pending: Optional[ChangeEvent] = None
        self._debounce_timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def _to_path(self, path: str | bytes) -> Path:
        if isinstance(path, bytes):
            return Path(path.decode("utf-8", errors="replace"))
        return Path(path)

    def _should_handle(self, path: Path) -> bool:
        return is_style_file(path, self.extensions)

    def _emit(self, event: ChangeEvent) -> None:
        if self.debounce <= 0:
            self.on_event(event)
            return
        with self._lock:
            self._pending = event
            if self._debounce_timer:
                self._debounce_timer.cancel()
            self._debounce_timer = threading.Timer(self.debounce, self._flush)
            self._debounce_timer.daemon = True
            self._debounce_timer.start()

    def _flush(self) -> None:
        with self._lock:
            event = self._pending
            self._pending = None
            self._debounce_timer = None
        if event is not None:
            self.on_event(event)

    def cancel(self) -> None:
        with self._lock:
            if self._debounce_timer:
                self._debounce_timer.cancel()
            self._debounce_timer = None
            self._pending = None

    def _dispatch(self, kind: EventKind, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        src = self._to_path(event.src_path)
        if self._should_handle(src):
            self._emit(ChangeEvent(kind, src))

    def on_created(self, event: FileSystemEvent) -> None:
        self._dispatch(EventKind.CREATED, event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._dispatch(EventKind.CHANGED, event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._dispatch(EventKind.DELETED, event)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        dest_path = getattr(event, "dest_path", None)
        if dest_path:
            dest = self._to_path(dest_path)
            if self._should_handle(dest):
                self._emit(ChangeEvent(EventKind.CREATED, dest))
                return
        src = self._to_path(event.src_path)
        if self._should_handle(src):
            self._emit(ChangeEvent(EventKind.DELETED, src))


# --- Watcher ---
class DirectoryWatcher:
    """Recursive watchdog subscription on a single root directory."""

    def __init__(
        self,
        root: Path,
        on_event: Callable[[ChangeEvent], None],
        extensions: tuple[str, ...] = STYLE_EXTENSIONS,
        debounce: float = DEFAULT_DEBOUNCE,
    ):
        self.root = root
        self.handler = StyleHandler(on_event, extensions, debounce)
        self.observer: Optional[Observer] = None

    def start(self) -> None:
        """Start watching. Raises StartupError rather than starting partially."""
        if not self.root.is_dir():
            raise StartupError(
                "could not start watcher",
                [(str(self.root), "not an accessible directory")],
            )

        failures: list[tuple[str, str]] = []
        observer = Observer()
        try:
            observer.schedule(self.handler, str(self.root), recursive=True)
            observer.start()
        except OSError as e:
            failures.append((str(self.root), e.strerror or str(e)))

        if failures:
            observer.stop()
            if observer.is_alive():
                observer.join()
            raise StartupError("could not start watcher", failures)
        self.observer = observer

    def wait(self) -> None:
        """Block until the observer thread exits."""
        while self.observer is not None and self.observer.is_alive():
            self.observer.join(1)

    def stop(self) -> None:
        self.handler.cancel()
        if self.observer is not None:
            self.observer.stop()
            if self.observer.is_alive():
                self.observer.join()
            self.observer = None


# --- Main ---
def check_input(config: WatchConfig) -> None:
    if not config.input_path.is_file():
        raise StartupError(f"input file {config.input_path} does not exist")


def run(config: WatchConfig, console: Optional[Console] = None) -> int:
    """Watch and rebuild until interrupted. Returns a process exit code."""
    reporter = Reporter(console)
    # Change-triggered rebuilds hold off until the compile on run has finished
    ready = threading.Event()

    def handle(event: Optional[ChangeEvent]) -> None:
        try:
            rebuild(config, event, reporter)
        except Exception as e:
            reporter.error(e, config, event)

    def on_change(event: ChangeEvent) -> None:
        ready.wait()
        handle(event)

    try:
        check_input(config)
        watcher = DirectoryWatcher(
            config.watch_root, on_change, config.extensions, config.debounce
        )
        watcher.start()
    except StartupError as e:
        reporter.error(e)
        return 1

    try:
        reporter.show_options(config)
        reporter.started()
        if config.compile_on_start:
            handle(None)
        ready.set()
        watcher.wait()
    except KeyboardInterrupt:
        reporter.console.print("\nStopping...")
    finally:
        ready.set()
        watcher.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG,
        usage="%(prog)s [options] <inputfile> <outputfile>",
        description=(
            "Recompile a CSS file when its Sass/SCSS input, or any style file "
            "in the input's folder tree, changes."
        ),
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("inputfile", help="Sass/SCSS file to compile")
    parser.add_argument("outputfile", help="CSS file to write to")
    parser.add_argument(
        "-s",
        "--source-map",
        action="store_true",
        help="write a source map next to the output css",
    )
    parser.add_argument(
        "-c",
        "--compile",
        action="store_true",
        help="compile on run",
    )
    parser.add_argument(
        "-m",
        "--minify",
        action="store_true",
        help="minify output css",
    )
    parser.add_argument(
        "--debounce",
        type=float,
        default=DEFAULT_DEBOUNCE,
        metavar="SECONDS",
        help="collapse bursts of changes into one rebuild (default: off)",
    )
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return run(WatchConfig.from_args(args))


if __name__ == "__main__":
    sys.exit(main())
