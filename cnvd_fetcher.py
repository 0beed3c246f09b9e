import time
import random
import threading
from collections import namedtuple
from urllib.parse import urlparse

import requests

from cnvd_utils import ConfigError, DomainNotAllowed, FetchError, get_current_time

requests.packages.urllib3.disable_warnings()

ALLOWED_DOMAINS = ('www.cnvd.org.cn',)

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 11_0_0) AppleWebKit/537.36 (KHTML, like Gecko) '
    'HeadlessChrome/87.0.4280.88 Safari/537.36'
)

# 详情页请求轮换使用，降低与列表页请求的关联
USER_AGENTS = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/110.0.5481.178 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15',
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0',
)

# 按字节读取响应体，每次读取后都能检查截止时间
READ_CHUNK_SIZE = 1

FetchedPage = namedtuple('FetchedPage', ['url', 'status', 'text'])


class RateLimitedFetcher:
    """
    限速请求器

    - 只允许访问白名单域名，其他请求在发送前拒绝
    - 同时在途请求数不超过 parallelism
    - 每个请求占用名额后再随机等待 0~random_delay 秒
    - 单个请求超时 timeout 秒，超时即失败，不重试
    - 每个请求都带上 User-Agent、keep-alive 和会话Cookie
    """

    def __init__(self, cookies, allowed_domains=ALLOWED_DOMAINS, parallelism=2, random_delay=5.0,
                 timeout=15.0, rotate_user_agent=False, proxy=None, verify_ssl=False, name='fetcher'):
        if parallelism < 1:
            raise ConfigError(f'{name}: parallelism must be >= 1, got {parallelism}')
        if random_delay < 0:
            raise ConfigError(f'{name}: random_delay must be >= 0, got {random_delay}')
        if timeout <= 0:
            raise ConfigError(f'{name}: timeout must be > 0, got {timeout}')
        if not allowed_domains:
            raise ConfigError(f'{name}: allowed_domains is empty')

        self.name = name
        # 会话Cookie在构造时固定，之后只读
        self.cookies = cookies
        self.allowed_domains = tuple(d.lower() for d in allowed_domains)
        self.parallelism = parallelism
        self.random_delay = random_delay
        self.timeout = timeout
        self.rotate_user_agent = rotate_user_agent
        self.proxies = {'http': proxy, 'https': proxy} if proxy else None
        self.verify_ssl = verify_ssl

        self._slots = threading.BoundedSemaphore(parallelism)
        self._session = requests.Session()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self._session.close()

    def is_allowed(self, url):
        host = (urlparse(url).hostname or '').lower()
        return host in self.allowed_domains

    def headers(self):
        user_agent = random.choice(USER_AGENTS) if self.rotate_user_agent else DEFAULT_USER_AGENT
        return {
            'User-Agent': user_agent,
            'Connection': 'keep-alive',
            'Cookie': self.cookies,
        }

    def get(self, url):
        return self.request('GET', url)

    def post(self, url, data):
        return self.request('POST', url, data=data)

    def request(self, method, url, data=None):
        if not self.is_allowed(url):
            raise DomainNotAllowed(url)

        with self._slots:
            if self.random_delay:
                time.sleep(random.uniform(0, self.random_delay))
            print(f'[{get_current_time()}][+] {self.name} 访问 {method} {url}')
            # 超时从发出请求开始算，覆盖连接、响应头和整个响应体
            deadline = time.monotonic() + self.timeout
            try:
                r = self._session.request(method, url, data=data, headers=self.headers(), proxies=self.proxies,
                                          verify=self.verify_ssl, timeout=self.timeout, stream=True)
            except requests.exceptions.Timeout as e:
                raise FetchError(url, f'timeout after {self.timeout}s') from e
            except requests.exceptions.RequestException as e:
                raise FetchError(url, str(e)) from e

            try:
                if not 200 <= r.status_code < 300:
                    # 521 为JSL挑战页，说明会话Cookie失效
                    raise FetchError(url, f'HTTP {r.status_code}', status=r.status_code)
                body = self._read_body(r, url, deadline)
            finally:
                r.close()

        content_type = r.headers.get('Content-Type', '').lower()
        encoding = r.encoding if 'charset' in content_type and r.encoding else 'utf-8'
        return FetchedPage(r.url, r.status_code, body.decode(encoding, errors='replace'))

    def _read_body(self, r, url, deadline):
        """边读边检查截止时间，服务器慢速吐数据时也能按时放弃"""
        chunks = []
        try:
            for chunk in r.iter_content(chunk_size=READ_CHUNK_SIZE):
                chunks.append(chunk)
                if time.monotonic() > deadline:
                    raise FetchError(url, f'timeout after {self.timeout}s')
        except requests.exceptions.RequestException as e:
            raise FetchError(url, str(e)) from e
        return b''.join(chunks)
