import os
import time
from typing import Optional

from playwright.sync_api import sync_playwright
from playwright.sync_api import Error as PlaywrightError

from cnvd_session import CNVD_HOME, CNVD_LIST_URL, SessionProvider, format_cookie_string, require_clearance_cookies
from cnvd_utils import BootstrapError, get_current_time

CHROME_PATH_ENV = "GOOGLE_CHROME_SHIM"

# 必须在页面脚本执行前注入，否则JSL脚本会识别到自动化环境
HIDE_WEBDRIVER_JS = "Object.defineProperty(navigator, 'webdriver', { get: () => false, });"

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


class CNVDBrowserClient:
    def __init__(self, headless=True, proxy=None, executable_path: Optional[str] = None):
        self.headless = headless
        self.proxy = proxy
        # 未指定时读取环境变量，仍为空则使用 Playwright 自带的 Chromium
        self.executable_path = executable_path or os.environ.get(CHROME_PATH_ENV) or None

        self.playwright = None
        self.browser = None
        self.context = None
        self.page = None

    def start(self, timeout_ms=30000):
        self.playwright = sync_playwright().start()

        launch_args = [
            "--disable-gpu",
            "--ignore-certificate-errors",
            "--disable-blink-features=AutomationControlled",
            "--no-sandbox",
        ]
        launch_config = {
            "headless": self.headless,
            "args": launch_args,
            "timeout": timeout_ms,
        }
        if self.executable_path:
            launch_config["executable_path"] = self.executable_path
        if self.proxy:
            launch_config["proxy"] = {"server": f"http://{self.proxy}"} if "://" not in self.proxy else {"server": self.proxy}

        self.browser = self.playwright.chromium.launch(**launch_config)
        self.context = self.browser.new_context(user_agent=USER_AGENT, ignore_https_errors=True)
        self.context.add_init_script(HIDE_WEBDRIVER_JS)
        self.page = self.context.new_page()

    def stop(self):
        if self.context:
            self.context.close()
        if self.browser:
            self.browser.close()
        if self.playwright:
            self.playwright.stop()
        self.context = self.browser = self.playwright = self.page = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.stop()

    def cookie_string(self):
        """读取站点下全部Cookie，拼成 name=value; name=value"""
        cookies = self.context.cookies([CNVD_HOME])
        return format_cookie_string((c["name"], c["value"]) for c in cookies)

    def ensure_clearance(self, timeout=20.0, settle_delay=5.0, url=CNVD_LIST_URL):
        """
        访问列表页，等待JSL脚本写入 __jsluid_s / __jsl_clearance_s，返回Cookie字符串

        整个过程（含浏览器启动和读取Cookie）限定在 timeout 秒内。
        launch/goto/wait 直接使用剩余时间作为超时；
        sync_playwright().start()、new_context、new_page 和 cookies() 不接受超时参数，
        只能在调用返回后检查截止时间，超时同样抛出 BootstrapError
        """
        deadline = time.monotonic() + timeout

        def remaining_ms():
            left = deadline - time.monotonic()
            if left <= 0:
                raise BootstrapError(f"会话初始化超时 ({timeout}s)")
            return left * 1000

        if self.page is None:
            self.start(timeout_ms=remaining_ms())

        self.page.goto(url, timeout=remaining_ms())
        settle_ms = settle_delay * 1000
        if settle_ms > remaining_ms():
            raise BootstrapError(f"会话初始化超时 ({timeout}s)")
        self.page.wait_for_timeout(settle_ms)
        remaining_ms()

        cookies = self.cookie_string()
        remaining_ms()
        return require_clearance_cookies(cookies)


class BrowserSessionProvider(SessionProvider):
    """用无头浏览器执行JSL校验脚本，取回校验Cookie"""

    def __init__(self, executable_path=None, settle_delay=5.0, proxy=None, headless=True):
        self.executable_path = executable_path
        self.settle_delay = settle_delay
        self.proxy = proxy
        self.headless = headless

    def bootstrap(self, timeout):
        print(f'[{get_current_time()}][+] 启动浏览器获取校验Cookie...')
        client = CNVDBrowserClient(headless=self.headless, proxy=self.proxy, executable_path=self.executable_path)
        try:
            cookies = client.ensure_clearance(timeout=timeout, settle_delay=self.settle_delay)
        except PlaywrightError as e:
            raise BootstrapError(f"浏览器会话初始化失败: {e}") from e
        finally:
            try:
                client.stop()
            except PlaywrightError as e:
                print(f'[{get_current_time()}][!] 关闭浏览器出错: {e}')
        print(f'[{get_current_time()}][+] 校验Cookie获取成功')
        return cookies
