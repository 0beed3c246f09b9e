import os
import re
import json
import time
import hashlib

import execjs
import requests

from cnvd_utils import BootstrapError, get_current_time

requests.packages.urllib3.disable_warnings()

CNVD_HOME = 'https://www.cnvd.org.cn/'
CNVD_LIST_URL = 'https://www.cnvd.org.cn/flaw/list.htm'

# 创宇盾(JSL)通过校验后下发的两个Cookie
REQUIRED_COOKIES = ('__jsluid_s', '__jsl_clearance_s')

COOKIES_ENV = 'CNVD_COOKIES'
DEFAULT_COOKIES_FILE = 'cookies.json'

RX_COOKIE_SCRIPT = re.compile(r'document\.cookie=(.*?);location\.')
RX_GO_DATA = re.compile(r'go\((\{.*?\})\)')

JSL_STATUS = 521


def format_cookie_string(pairs):
    """[(name, value), ...] 或 dict -> 'name=value; name=value'"""
    if isinstance(pairs, dict):
        pairs = pairs.items()
    return '; '.join(f'{name}={value}' for name, value in pairs)


def parse_cookie_string(cookie_str):
    """'name=value; name=value' -> dict"""
    cookies = {}
    for part in (cookie_str or '').split(';'):
        if '=' not in part:
            continue
        name, value = part.split('=', 1)
        if name.strip():
            cookies[name.strip()] = value.strip()
    return cookies


def require_clearance_cookies(cookie_str):
    """两个校验Cookie缺一不可，否则后续请求都会被拦截"""
    names = parse_cookie_string(cookie_str)
    missing = [name for name in REQUIRED_COOKIES if name not in names]
    if missing:
        raise BootstrapError(f'required cookie values not set ({", ".join(missing)}): {cookie_str}')
    return cookie_str


class SessionProvider:
    """
    会话提供者：能产出一段通过反爬校验的Cookie字符串即可

    bootstrap(timeout) 在 timeout 秒内返回Cookie字符串，失败抛出 BootstrapError
    """

    def bootstrap(self, timeout):
        raise NotImplementedError


class StaticSessionProvider(SessionProvider):
    """使用事先获取的Cookie（参数、环境变量 CNVD_COOKIES 或 login.py 保存的 cookies.json）"""

    def __init__(self, cookies=None):
        self.cookies = cookies

    @classmethod
    def from_env(cls):
        return cls(os.environ.get(COOKIES_ENV))

    @classmethod
    def from_file(cls, path=DEFAULT_COOKIES_FILE):
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise BootstrapError(f'读取Cookie文件失败 {path}: {e}') from e
        if isinstance(data, dict):
            return cls(format_cookie_string(data))
        # Playwright context.cookies() 格式
        return cls(format_cookie_string((c['name'], c['value']) for c in data))

    def bootstrap(self, timeout):
        if not self.cookies:
            raise BootstrapError('no cookies supplied')
        return require_clearance_cookies(self.cookies)


def get_jsl_clearance_s(jsl_data):
    """生成JSL clearance"""
    chars = jsl_data['chars']
    for i in range(len(chars)):
        for j in range(len(chars)):
            jsl_clearance_s = jsl_data['bts'][0] + chars[i] + chars[j] + jsl_data['bts'][1]
            if getattr(hashlib, jsl_data['ha'])(jsl_clearance_s.encode('utf-8')).hexdigest() == jsl_data['ct']:
                return jsl_clearance_s
    return None


def eval_cookie_script(text):
    """执行首个521页面里的 document.cookie=... 表达式，返回 __jsl_clearance_s 的值"""
    found = RX_COOKIE_SCRIPT.findall(text)
    if not found:
        return None
    return execjs.eval(found[0]).split(';')[0].split('=', 1)[1]


class JSLSessionProvider(SessionProvider):
    """
    不启动浏览器，直接用requests完成JSL校验

    第一次521响应带有一段生成Cookie的JS表达式，第二次521响应带有 go({...})
    哈希挑战，两步都通过后服务器返回正常页面
    """

    def __init__(self, url=CNVD_LIST_URL, proxy=None, verify_ssl=False, max_rounds=3, session=None):
        self.url = url
        self.proxies = {'http': proxy, 'https': proxy} if proxy else None
        self.verify_ssl = verify_ssl
        self.max_rounds = max_rounds
        self.session = session or requests.Session()
        self.session.headers['User-Agent'] = (
            'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) '
            'Chrome/110.0.5481.178 Safari/537.36'
        )

    def _request(self, deadline):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise BootstrapError('JSL校验超时')
        try:
            return self.session.get(self.url, proxies=self.proxies, verify=self.verify_ssl, timeout=remaining)
        except requests.exceptions.RequestException as e:
            raise BootstrapError(f'请求失败: {e}') from e

    def bootstrap(self, timeout):
        deadline = time.monotonic() + timeout
        r = self._request(deadline)
        rounds = 0
        while r.status_code == JSL_STATUS:
            rounds += 1
            if rounds > self.max_rounds:
                raise BootstrapError(f'JSL校验未通过，已尝试 {self.max_rounds} 次')

            clearance = eval_cookie_script(r.text)
            if clearance is None:
                go_data = RX_GO_DATA.findall(r.text)
                if not go_data:
                    raise BootstrapError('未识别的521页面')
                jsl_data = json.loads(go_data[0])
                clearance = get_jsl_clearance_s(jsl_data)
                if clearance is None:
                    raise BootstrapError('JSL哈希挑战求解失败')
                cookie_name = jsl_data.get('tn', '__jsl_clearance_s')
            else:
                cookie_name = '__jsl_clearance_s'

            print(f'[{get_current_time()}][+] 第 {rounds} 轮JSL校验: {cookie_name}')
            self.session.cookies.set(cookie_name, clearance, domain='www.cnvd.org.cn', path='/')
            r = self._request(deadline)

        if r.status_code != 200:
            raise BootstrapError(f'JSL校验后状态码异常: {r.status_code}')

        cookie_str = format_cookie_string((c.name, c.value) for c in self.session.cookies)
        return require_clearance_cookies(cookie_str)
