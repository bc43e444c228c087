"""
Argument vectors for the yt-dlp binary.

Arguments are held as typed options (a flag plus its optional value) instead of
a flat token list, so a flag and its value are always added and removed together.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from .models import DownloadRequest, InfoRequest, MediaMode

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) '
    'AppleWebKit/537.36 (KHTML, like Gecko) '
    'Chrome/123.0.0.0 Safari/537.36'
)

# Reserved format id for "let yt-dlp pick the best audio stream"
AUTO_BEST_AUDIO = "bestaudio"

# Flags that carry an identity; stripped for guest strategies
CREDENTIAL_FLAGS = frozenset({
    "--cookies",
    "--cookies-from-browser",
    "--username",
    "--password",
    "--netrc",
})

DEFAULT_VIDEO_FORMAT = "best[container=mp4]/best"


@dataclass(frozen=True)
class Option:
    """A single command line option: a flag and, optionally, its value."""
    flag: str
    value: Optional[str] = None

    def tokens(self) -> List[str]:
        if self.value is None:
            return [self.flag]
        return [self.flag, self.value]


class ArgumentList:
    """Immutable, ordered sequence of options. Every mutator returns a new list."""

    def __init__(self, options: Iterable[Option] = ()):
        self._options: Tuple[Option, ...] = tuple(options)

    def add(self, flag: str, value: Optional[str] = None) -> "ArgumentList":
        return ArgumentList(self._options + (Option(flag, value),))

    def extend(self, options: Iterable[Option]) -> "ArgumentList":
        return ArgumentList(self._options + tuple(options))

    def without(self, flags: Iterable[str]) -> "ArgumentList":
        """Drop every option whose flag is in ``flags``, value included."""
        dropped = frozenset(flags)
        return ArgumentList(o for o in self._options if o.flag not in dropped)

    def has(self, flag: str) -> bool:
        return any(o.flag == flag for o in self._options)

    def value_of(self, flag: str) -> Optional[str]:
        for option in self._options:
            if option.flag == flag:
                return option.value
        return None

    def to_argv(self) -> List[str]:
        argv: List[str] = []
        for option in self._options:
            argv.extend(option.tokens())
        return argv

    def __iter__(self) -> Iterator[Option]:
        return iter(self._options)

    def __len__(self) -> int:
        return len(self._options)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ArgumentList):
            return NotImplemented
        return self._options == other._options

    def __repr__(self) -> str:
        return f"ArgumentList({self.to_argv()!r})"


def base_arguments(
    user_agent: str = DEFAULT_USER_AGENT,
    cookies_path: Optional[str] = None,
    windows: bool = False,
) -> ArgumentList:
    """Options sent with every invocation of the tool."""
    args = (
        ArgumentList()
        .add('--no-check-certificates')
        .add('--user-agent', user_agent)
        .add('--ignore-errors')
        .add('--no-warnings')
        .add('--restrict-filenames')
    )
    # The standalone Windows build needs an explicit JS runtime for signature decoding
    if windows:
        args = args.add('--js-runtime', 'node')
    if cookies_path:
        args = args.add('--cookies', cookies_path)
    return args


def video_format_selector(format_id: Optional[str]) -> str:
    """Merge the chosen video-only stream with m4a audio, falling back to a muxed mp4."""
    if format_id:
        return f"{format_id}+bestaudio[container=m4a]/best[container=mp4]/best"
    return DEFAULT_VIDEO_FORMAT


def format_options(mode: MediaMode, format_selector: Optional[str]) -> List[Option]:
    if mode == MediaMode.AUDIO:
        return [
            Option('-x'),
            Option('--audio-format', 'mp3'),
            Option('--audio-quality', '0'),
            Option('-f', format_selector or AUTO_BEST_AUDIO),
        ]
    return [Option('-f', video_format_selector(format_selector))]


def build(base: ArgumentList, request: Union[InfoRequest, DownloadRequest]) -> List[str]:
    """
    Translate a request into the argv passed to the tool (URL not included).

    Info requests get the metadata dump flag, downloads get their format options.
    Selectors are passed through verbatim; yt-dlp rejects invalid ones itself.
    """
    return build_list(base, request).to_argv()


def build_list(base: ArgumentList, request: Union[InfoRequest, DownloadRequest]) -> ArgumentList:
    if isinstance(request, InfoRequest):
        return info_arguments(base)
    return base.extend(format_options(request.mode, request.format_selector))


def info_arguments(base: ArgumentList) -> ArgumentList:
    return base.add('-j')


def title_arguments(base: ArgumentList) -> ArgumentList:
    return base.add('--print', '%(title)s')


def size_arguments(base: ArgumentList, request: DownloadRequest) -> ArgumentList:
    return build_list(base, request).add('--print', 'filesize_approx')


def stream_arguments(base: ArgumentList, request: DownloadRequest) -> ArgumentList:
    return build_list(base, request).add('-o', '-')
