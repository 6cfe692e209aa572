"""
Development-marker rule engine.

Pure classification of artifacts observed on a page (console lines, network
response bodies, script bodies, page-level facts) into a single verdict:
"development build" or "not detected".

Nothing in here touches the browser or the filesystem. The agent collects
artifacts, this module decides.
"""

from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Union


# Case-sensitive literals. Order only matters for reporting.
DEV_MARKERS = (
    'development build',
    'react.development.js',
    'webpack://',
    'eval(',
    'sourceMappingURL',
    'webpackHotUpdate',
    'HMR',
    '__DEV__',
)

# Script URLs whose bodies are never inspected (known vendor bundles)
IGNORED_SCRIPTS = (
    'bootstrap.bundle.min.js',
)

ENV_DEV_MARKER = 'NODE_ENV=development'

# Page-level predicate disjuncts
PAGE_SCRIPT_MARKERS = ('webpack://', 'react.development.js')

@dataclass(frozen=True)
class PageState:
    """Page-level facts read from the live document."""
    has_devtools_hook: bool = False
    script_srcs: tuple = ()


@dataclass(frozen=True)
class ScanResult:
    """
    Outcome of one website scan.

    `is_development_build` is the OR of the four findings, except when the
    scan aborted (timed_out or error), where it is always False.
    """
    dev_log_found: bool = False
    source_map_found: bool = False
    dev_file_found: bool = False
    dev_by_page_predicate: bool = False
    is_development_build: bool = False
    timed_out: bool = False
    error: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self.timed_out or self.error is not None


def matches_any_marker(text: Optional[str], markers: Iterable[str] = DEV_MARKERS) -> bool:
    """True iff `text` contains at least one marker as a substring."""
    if not text:
        return False
    return any(marker in text for marker in markers)


def find_markers(text: Optional[str], markers: Iterable[str] = DEV_MARKERS) -> list:
    """Markers present in `text`, in marker order."""
    if not text:
        return []
    return [marker for marker in markers if marker in text]


def is_ignored_url(url: Optional[str], ignored: Iterable[str] = IGNORED_SCRIPTS) -> bool:
    """True iff `url` contains at least one ignore-list entry."""
    if not url:
        return False
    return any(entry in url for entry in ignored)


def find_dev_logs(logs: Iterable[str]) -> list:
    """Console lines that carry a development marker."""
    return [log for log in logs if matches_any_marker(log)]


def classify_console_logs(logs: Iterable[str]) -> bool:
    return len(find_dev_logs(logs)) > 0


def classify_network_responses(
    responses: Iterable[tuple[str, Union[str, Exception]]]
) -> dict:
    """
    Classify captured network responses.

    Each response is a (url, body_or_error) pair. The body is a string when
    retrieval succeeded and an Exception when it failed.

    CRITICAL: `source_map_found` looks at every URL, ignore list or not.
    Body inspection only applies to .js/.map URLs that are NOT ignored.

    Returns:
        Dictionary with source_map_found, dev_file_found, and the URL lists
        behind them (source_maps, dev_files, errors)
    """
    source_maps = []
    dev_files = []
    errors = []

    for url, body in responses:
        if url.endswith('.map'):
            source_maps.append(url)

        if not (url.endswith('.js') or url.endswith('.map')):
            continue
        if is_ignored_url(url):
            continue

        if isinstance(body, Exception):
            # Failed retrieval contributes no match
            errors.append((url, body))
            continue

        if matches_any_marker(body):
            dev_files.append(url)

    return {
        "source_map_found": len(source_maps) > 0,
        "dev_file_found": len(dev_files) > 0,
        "source_maps": source_maps,
        "dev_files": dev_files,
        "errors": errors,
    }


def fetch_or_none(fetcher: Callable[[str], Optional[str]], url: str) -> Optional[str]:
    """
    Run `fetcher(url)`, degrading any failure to None.

    A fetcher signals failure either by raising or by returning None.
    """
    try:
        body = fetcher(url)
    except Exception:
        return None
    if not isinstance(body, str):
        return None
    return body


def inspect_scripts(
    script_urls: Iterable[str],
    fetcher: Callable[[str], Optional[str]]
) -> dict:
    """
    Fetch each script body and look for development markers.

    Empty and ignored URLs are never fetched. A failed fetch skips that
    script and the scan carries on.

    Returns:
        Dictionary with dev_file_found, dev_files and skipped (failed URLs)
    """
    dev_files = []
    skipped = []

    for url in script_urls:
        if not url or is_ignored_url(url):
            continue

        body = fetch_or_none(fetcher, url)
        if body is None:
            skipped.append(url)
            continue

        if matches_any_marker(body):
            dev_files.append(url)

    return {
        "dev_file_found": len(dev_files) > 0,
        "dev_files": dev_files,
        "skipped": skipped,
    }


def classify_scripts(
    script_urls: Iterable[str],
    fetcher: Callable[[str], Optional[str]]
) -> bool:
    return inspect_scripts(script_urls, fetcher)["dev_file_found"]


def evaluate_page_predicate(page_state: PageState) -> bool:
    """
    Page-level indicator: React devtools hook present, or a <script> whose
    src contains webpack:// or react.development.js.
    """
    if page_state.has_devtools_hook:
        return True
    return any(
        marker in src
        for src in page_state.script_srcs
        if src
        for marker in PAGE_SCRIPT_MARKERS
    )


def final_verdict(
    dev_log_found: bool,
    source_map_found: bool,
    dev_file_found: bool,
    dev_by_page_predicate: bool
) -> bool:
    return bool(dev_log_found or source_map_found or dev_file_found or dev_by_page_predicate)


def build_scan_result(
    dev_log_found: bool,
    source_map_found: bool,
    dev_file_found: bool,
    dev_by_page_predicate: bool
) -> ScanResult:
    return ScanResult(
        dev_log_found=dev_log_found,
        source_map_found=source_map_found,
        dev_file_found=dev_file_found,
        dev_by_page_predicate=dev_by_page_predicate,
        is_development_build=final_verdict(
            dev_log_found, source_map_found, dev_file_found, dev_by_page_predicate
        ),
    )


def aborted_scan(timed_out: bool, error: Optional[str] = None) -> ScanResult:
    """Result for a scan that never got past navigation. Verdict is forced False."""
    return ScanResult(timed_out=timed_out, error=error)


def check_env_marker(file_contents: Optional[str]) -> bool:
    """True iff .env contents are present and contain NODE_ENV=development."""
    if file_contents is None:
        return False
    return ENV_DEV_MARKER in file_contents
