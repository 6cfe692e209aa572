#!/usr/bin/env python3
"""
Development Build Scout - is this site (or source tree) running a dev build?

Website mode loads the page in headless Chromium and captures:
1. Console output emitted during page load
2. Every network response (source maps, .js/.map bodies)
3. Script bodies re-fetched from inside the page
4. Page-level hints (React devtools hook, dev script tags)

Source-code mode reads <directory>/.env and looks for NODE_ENV=development.

Single-session: everything is captured in ONE page.goto() call, then handed
to the rule engine in devbuild_rules.
"""

import os
import sys
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from playwright.sync_api import (
    Error as PlaywrightError,
    Page,
    Response,
    TimeoutError as PlaywrightTimeoutError,
    sync_playwright,
)

from devbuild_rules import (
    PageState,
    ScanResult,
    aborted_scan,
    build_scan_result,
    check_env_marker,
    classify_network_responses,
    evaluate_page_predicate,
    find_dev_logs,
    inspect_scripts,
    is_ignored_url,
)


# Fix Windows console encoding for emoji support
if sys.platform == 'win32':
    try:
        sys.stdout.reconfigure(encoding='utf-8')
        sys.stderr.reconfigure(encoding='utf-8')
    except Exception:
        pass  # Ignore if reconfigure not available


USAGE = "Usage: devbuild-scout --type <website|sourcecode> <url|directory> [--verbose]"
SCAN_TYPES = ('website', 'sourcecode')

DEFAULT_NAV_TIMEOUT_MS = 30000
DEFAULT_FETCH_TIMEOUT_MS = 10000
ENV_FILE_NAME = '.env'

# Avoid default "HeadlessChrome" UA that triggers 403s
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"

# In-page expressions
SCRIPT_SRCS_JS = "() => Array.from(document.scripts).map(script => script.src)"
FETCH_TEXT_JS = """({ url, timeoutMs }) => {
    const controller = new AbortController();
    const timer = setTimeout(() => controller.abort(), timeoutMs);
    return fetch(url, { signal: controller.signal })
        .then(res => res.text())
        .catch(() => null)
        .finally(() => clearTimeout(timer));
}"""
DEVTOOLS_HOOK_JS = "() => typeof __REACT_DEVTOOLS_GLOBAL_HOOK__ !== 'undefined'"

VERDICT_WEBSITE = ("Development build detected.", "No development build detected.")
VERDICT_SOURCECODE = ("Development environment detected.", "No development environment detected.")


# ==============================================================================
# CONFIGURATION
# ==============================================================================

def _load_dotenv_fallback(keys: tuple) -> None:
    """Fill unset keys from a .env next to this file, if there is one."""
    env_file = Path(__file__).parent / ENV_FILE_NAME
    if not env_file.exists():
        return
    try:
        lines = env_file.read_text(encoding='utf-8').splitlines()
    except (OSError, UnicodeDecodeError):
        return
    for line in lines:
        key, sep, value = line.partition('=')
        key = key.strip()
        if sep and key in keys and not os.getenv(key):
            os.environ[key] = value.strip()


def load_config() -> dict:
    """
    Runtime settings from the environment.

    DEVBUILD_NAV_TIMEOUT_MS: navigation budget in ms (default 30000)
    DEVBUILD_HEADLESS: "0"/"false"/"no" shows the browser window
    """
    _load_dotenv_fallback(('DEVBUILD_NAV_TIMEOUT_MS', 'DEVBUILD_HEADLESS'))

    timeout_ms = DEFAULT_NAV_TIMEOUT_MS
    raw_timeout = os.getenv('DEVBUILD_NAV_TIMEOUT_MS')
    if raw_timeout:
        try:
            timeout_ms = int(raw_timeout)
        except ValueError:
            timeout_ms = DEFAULT_NAV_TIMEOUT_MS
        if timeout_ms <= 0:
            timeout_ms = DEFAULT_NAV_TIMEOUT_MS

    headless = os.getenv('DEVBUILD_HEADLESS', '1').strip().lower() not in ('0', 'false', 'no')

    return {
        "timeout_ms": timeout_ms,
        "headless": headless,
    }


# ==============================================================================
# PAGE CAPTURE (Playwright collaborator)
# ==============================================================================

def capture_page(page: Page, url: str, timeout_ms: int = DEFAULT_NAV_TIMEOUT_MS) -> tuple[list, list]:
    """
    Load `url` and collect console lines plus (url, Response) pairs.

    CRITICAL: listeners are attached BEFORE navigation, otherwise early
    console output and the first script responses are lost.

    Navigation errors (including timeouts) propagate to the caller.

    Returns:
        (console_logs, responses)
    """
    console_logs = []
    responses = []

    def handle_console(message):
        console_logs.append(message.text)

    def handle_response(response: Response):
        responses.append((response.url, response))

    page.on("console", handle_console)
    page.on("response", handle_response)

    page.goto(url, wait_until='networkidle', timeout=timeout_ms)

    return console_logs, responses


def read_response_bodies(responses: list) -> list:
    """
    Turn captured (url, Response) pairs into (url, body_or_error).

    Only bodies the rule engine will inspect are read (.js/.map, not
    ignored). Everything else keeps an empty body so source-map detection
    still sees the URL.
    """
    bodies = []
    for url, response in responses:
        if not (url.endswith('.js') or url.endswith('.map')) or is_ignored_url(url):
            bodies.append((url, ''))
            continue
        try:
            bodies.append((url, response.text()))
        except Exception as e:
            bodies.append((url, e))
    return bodies


def list_script_urls(page: Page) -> list:
    """Script src URLs in the document at evaluation time (absolute, may be empty)."""
    try:
        return page.evaluate(SCRIPT_SRCS_JS) or []
    except PlaywrightError:
        return []


def make_in_page_fetcher(page: Page, timeout_ms: int = DEFAULT_FETCH_TIMEOUT_MS):
    """
    Fetcher that retrieves text from inside the page's context.

    Each fetch is aborted after `timeout_ms`; failures and aborts give None.
    """
    def fetch_text(url: str) -> Optional[str]:
        return page.evaluate(FETCH_TEXT_JS, {"url": url, "timeoutMs": timeout_ms})
    return fetch_text


def extract_script_srcs(html_content: str) -> tuple:
    """Raw src attributes of every <script src=...> in the HTML."""
    soup = BeautifulSoup(html_content, 'html.parser')
    return tuple(tag.get('src', '') for tag in soup.find_all('script', src=True))


def read_page_state(page: Page) -> PageState:
    """Snapshot the page-level facts used by the page predicate."""
    try:
        has_hook = bool(page.evaluate(DEVTOOLS_HOOK_JS))
    except PlaywrightError:
        has_hook = False

    try:
        script_srcs = extract_script_srcs(page.content())
    except PlaywrightError:
        script_srcs = ()

    return PageState(has_devtools_hook=has_hook, script_srcs=script_srcs)


# ==============================================================================
# WEBSITE SCAN
# ==============================================================================

def scan_page(
    page: Page,
    url: str,
    verbose: bool = False,
    timeout_ms: int = DEFAULT_NAV_TIMEOUT_MS
) -> ScanResult:
    """
    Run every website check against an open page.

    Verbose mode prints per-check diagnostics; it never changes the result.

    Args:
        page: Playwright Page (or anything with the same surface)
        url: Target URL
        verbose: Print per-check diagnostics
        timeout_ms: Navigation budget

    Returns:
        ScanResult (aborted, verdict False, if navigation failed)
    """
    try:
        console_logs, responses = capture_page(page, url, timeout_ms)
    except PlaywrightTimeoutError:
        return aborted_scan(timed_out=True)
    except PlaywrightError as e:
        return aborted_scan(timed_out=False, error=str(e))

    # 1. Console output
    dev_logs = find_dev_logs(console_logs)
    if verbose:
        for log in dev_logs:
            print(f"⚠️  Warning: Detected development log: {log}")
        if not dev_logs:
            print("No development logs detected.")

    # 2. Network responses (source maps + .js/.map bodies)
    network = classify_network_responses(read_response_bodies(responses))
    if verbose:
        for map_url in network['source_maps']:
            print(f"⚠️  Warning: Source map found: {map_url}")
        if not network['source_map_found']:
            print("No source maps detected.")
        for file_url in network['dev_files']:
            print(f"⚠️  Warning: Detected development-specific code in {file_url}")
        for error_url, error in network['errors']:
            print(f"❌ Error fetching response body for {error_url}: {error}")

    # 3. Script bodies fetched in-page
    scripts = inspect_scripts(list_script_urls(page), make_in_page_fetcher(page))
    if verbose:
        for script_url in scripts['dev_files']:
            print(f"⚠️  Warning: Detected development-specific code in script: {script_url}")
        for script_url in scripts['skipped']:
            print(f"❌ Skipping script due to fetch error: {script_url}")

    dev_file_found = network['dev_file_found'] or scripts['dev_file_found']
    if verbose and not dev_file_found:
        print("No development-specific code detected in the page content.")

    # 4. Page-level predicate
    dev_by_page_predicate = evaluate_page_predicate(read_page_state(page))
    if verbose:
        if dev_by_page_predicate:
            print("⚠️  Warning: Detected development build via script-based check.")
        else:
            print("No development build detected via script-based check.")

    return build_scan_result(
        dev_log_found=len(dev_logs) > 0,
        source_map_found=network['source_map_found'],
        dev_file_found=dev_file_found,
        dev_by_page_predicate=dev_by_page_predicate,
    )


def report_website_verdict(result: ScanResult, url: str, verbose: bool = False) -> None:
    """Print the final line. Aborted scans never print a clean verdict."""
    if result.timed_out:
        if verbose:
            print(f"❌ Error: Page load timed out for {url}")
        else:
            print("Page load timed out.")
        return

    if result.error is not None:
        if verbose:
            print(f"❌ Error: Page load failed for {url}: {result.error}")
        else:
            print("Page load failed.")
        return

    detected, clean = VERDICT_WEBSITE
    print(detected if result.is_development_build else clean)


def check_website(
    url: str,
    verbose: bool = False,
    timeout_ms: Optional[int] = None,
    headless: Optional[bool] = None
) -> ScanResult:
    """
    Launch Chromium, scan `url`, print the verdict.

    The browser is always closed, even when the scan fails.
    """
    config = load_config()
    if timeout_ms is None:
        timeout_ms = config['timeout_ms']
    if headless is None:
        headless = config['headless']

    if verbose:
        print(f"🔍 Inspecting: {url}")

    with sync_playwright() as p:
        browser = p.chromium.launch(headless=headless)
        try:
            context = browser.new_context(
                user_agent=USER_AGENT,
                extra_http_headers={
                    "Accept-Language": "en-US,en;q=0.9"
                }
            )
            page = context.new_page()
            result = scan_page(page, url, verbose, timeout_ms)
        finally:
            browser.close()

    report_website_verdict(result, url, verbose)
    return result


# ==============================================================================
# SOURCE-CODE SCAN
# ==============================================================================

def read_env_file(directory: str, verbose: bool = False) -> Optional[str]:
    """Contents of <directory>/.env, or None if absent or unreadable."""
    env_path = Path(directory) / ENV_FILE_NAME

    if not env_path.is_file():
        if verbose:
            print("❌ Error: .env file not found in the specified directory.")
        return None

    try:
        return env_path.read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        if verbose:
            print(f"❌ Error reading .env file: {e}")
        return None


def check_source_code(directory: str, verbose: bool = False) -> bool:
    """Look for NODE_ENV=development in <directory>/.env and print the verdict."""
    contents = read_env_file(directory, verbose)
    is_dev = check_env_marker(contents)

    if verbose and contents is not None:
        if is_dev:
            print("⚠️  Warning: Detected NODE_ENV=development in .env file.")
        else:
            print("No development environment detected in .env file.")

    detected, clean = VERDICT_SOURCECODE
    print(detected if is_dev else clean)
    return is_dev


# ==============================================================================
# CLI
# ==============================================================================

def is_valid_url(target: Optional[str]) -> bool:
    """
    Absolute URL with a scheme. http(s) URLs also need a host;
    file:, about: and data: URLs do not.
    """
    if not target:
        return False
    try:
        parsed = urlparse(target)
    except ValueError:
        return False
    if not parsed.scheme:
        return False
    if parsed.scheme.lower() in ('http', 'https'):
        return bool(parsed.netloc)
    return True


def main(argv: Optional[list] = None) -> int:
    """Command-line entry point. Returns the process exit code."""
    args = sys.argv[1:] if argv is None else list(argv)

    if len(args) < 3 or len(args) > 4:
        print(USAGE, file=sys.stderr)
        return 1

    if '--type' not in args or args.index('--type') + 1 >= len(args):
        print("Invalid or missing --type parameter.", file=sys.stderr)
        print(USAGE, file=sys.stderr)
        return 1

    type_index = args.index('--type')
    scan_type = args[type_index + 1]
    target = args[type_index + 2] if type_index + 2 < len(args) else None
    verbose = '--verbose' in args

    if scan_type not in SCAN_TYPES:
        print('Invalid type. Must be either "website" or "sourcecode".', file=sys.stderr)
        return 1

    if scan_type == 'website' and not is_valid_url(target):
        print("Invalid URL.", file=sys.stderr)
        return 1

    if target is None:
        print(USAGE, file=sys.stderr)
        return 1

    try:
        if scan_type == 'website':
            check_website(target, verbose)
        else:
            check_source_code(target, verbose)
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted by user", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"\n❌ Fatal error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
