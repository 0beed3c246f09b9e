import time

import pytest
from playwright.sync_api import Error as PlaywrightError

import cnvd_browser_client
from cnvd_browser_client import HIDE_WEBDRIVER_JS, BrowserSessionProvider, CNVDBrowserClient
from cnvd_utils import BootstrapError

VALID_COOKIES = [
    {"name": "__jsluid_s", "value": "uid1", "domain": "www.cnvd.org.cn"},
    {"name": "JSESSIONID", "value": "S1", "domain": "www.cnvd.org.cn"},
    {"name": "__jsl_clearance_s", "value": "1700|0|abc", "domain": "www.cnvd.org.cn"},
]


class FakePage:
    def __init__(self, events, goto_error=None):
        self.events = events
        self.goto_error = goto_error

    def goto(self, url, timeout=None):
        self.events.append(("goto", url, timeout))
        if self.goto_error:
            raise self.goto_error

    def wait_for_timeout(self, ms):
        self.events.append(("wait", ms))


class FakeContext:
    def __init__(self, events, cookies, goto_error=None, delays=None):
        self.events = events
        self._cookies = cookies
        self.goto_error = goto_error
        self.delays = delays or {}

    def add_init_script(self, script):
        self.events.append(("init_script", script))

    def new_page(self):
        time.sleep(self.delays.get("new_page", 0))
        return FakePage(self.events, self.goto_error)

    def cookies(self, urls=None):
        self.events.append(("cookies", urls))
        time.sleep(self.delays.get("cookies", 0))
        return self._cookies

    def close(self):
        self.events.append(("close_context",))


class FakeBrowser:
    def __init__(self, events, context):
        self.events = events
        self.context = context

    def new_context(self, **kwargs):
        self.events.append(("new_context", kwargs))
        return self.context

    def close(self):
        self.events.append(("close_browser",))


class FakePlaywright:
    def __init__(self, events, cookies, goto_error=None, delays=None):
        self.events = events
        self.chromium = self
        self.browser = FakeBrowser(events, FakeContext(events, cookies, goto_error, delays))

    def start(self):
        return self

    def launch(self, **kwargs):
        self.events.append(("launch", kwargs))
        return self.browser

    def stop(self):
        self.events.append(("stop",))


@pytest.fixture
def fake_playwright(monkeypatch):
    def install(cookies=VALID_COOKIES, goto_error=None, delays=None):
        events = []
        monkeypatch.setattr(cnvd_browser_client, "sync_playwright",
                            lambda: FakePlaywright(events, cookies, goto_error, delays))
        return events

    return install


def test_ensure_clearance_returns_cookie_string(fake_playwright):
    events = fake_playwright()
    client = CNVDBrowserClient(executable_path="/opt/chrome")

    cookies = client.ensure_clearance(timeout=20, settle_delay=5)
    client.stop()

    assert cookies == "__jsluid_s=uid1; JSESSIONID=S1; __jsl_clearance_s=1700|0|abc"
    launch = next(e for e in events if e[0] == "launch")[1]
    assert launch["headless"] is True
    assert launch["executable_path"] == "/opt/chrome"
    assert "--disable-gpu" in launch["args"]
    assert "--ignore-certificate-errors" in launch["args"]
    assert next(e for e in events if e[0] == "new_context")[1]["ignore_https_errors"] is True
    assert ("wait", 5000) in events
    assert ("cookies", ["https://www.cnvd.org.cn/"]) in events


def test_webdriver_flag_hidden_before_navigation(fake_playwright):
    events = fake_playwright()
    CNVDBrowserClient().ensure_clearance(timeout=20, settle_delay=0)

    names = [e[0] for e in events]
    assert ("init_script", HIDE_WEBDRIVER_JS) in events
    assert names.index("init_script") < names.index("goto")


def test_executable_path_from_env(monkeypatch):
    monkeypatch.setenv("GOOGLE_CHROME_SHIM", "/app/.apt/usr/bin/google-chrome")
    assert CNVDBrowserClient().executable_path == "/app/.apt/usr/bin/google-chrome"
    monkeypatch.delenv("GOOGLE_CHROME_SHIM")
    assert CNVDBrowserClient().executable_path is None


def test_launch_without_override_uses_bundled_browser(fake_playwright, monkeypatch):
    monkeypatch.delenv("GOOGLE_CHROME_SHIM", raising=False)
    events = fake_playwright()
    CNVDBrowserClient().ensure_clearance(timeout=20, settle_delay=0)
    assert "executable_path" not in next(e for e in events if e[0] == "launch")[1]


def test_missing_clearance_cookie_fails(fake_playwright):
    fake_playwright(cookies=VALID_COOKIES[:2])
    with pytest.raises(BootstrapError):
        CNVDBrowserClient().ensure_clearance(timeout=20, settle_delay=0)


def test_settle_delay_longer_than_timeout_fails(fake_playwright):
    fake_playwright()
    with pytest.raises(BootstrapError):
        CNVDBrowserClient().ensure_clearance(timeout=1, settle_delay=5)


def test_provider_wraps_browser_errors_and_stops(fake_playwright):
    events = fake_playwright(goto_error=PlaywrightError("net::ERR_CONNECTION_RESET"))

    with pytest.raises(BootstrapError):
        BrowserSessionProvider(settle_delay=0).bootstrap(20)
    assert ("stop",) in events


def test_provider_returns_cookies(fake_playwright):
    events = fake_playwright()
    cookies = BrowserSessionProvider(settle_delay=0).bootstrap(20)
    assert "__jsl_clearance_s=1700|0|abc" in cookies
    assert ("close_browser",) in events


def test_slow_browser_startup_counts_against_timeout(fake_playwright):
    events = fake_playwright(delays={"new_page": 0.3})

    with pytest.raises(BootstrapError):
        CNVDBrowserClient().ensure_clearance(timeout=0.2, settle_delay=0)
    assert "goto" not in [e[0] for e in events]


def test_slow_cookie_read_counts_against_timeout(fake_playwright):
    events = fake_playwright(delays={"cookies": 0.3})

    with pytest.raises(BootstrapError):
        CNVDBrowserClient().ensure_clearance(timeout=0.2, settle_delay=0)
    assert "cookies" in [e[0] for e in events]


def test_provider_stops_browser_after_startup_timeout(fake_playwright):
    events = fake_playwright(delays={"new_page": 0.3})

    with pytest.raises(BootstrapError):
        BrowserSessionProvider(settle_delay=0).bootstrap(0.2)
    assert ("stop",) in events
