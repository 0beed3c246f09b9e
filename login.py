import os
import json
import argparse

from cnvd_browser_client import CHROME_PATH_ENV, CNVDBrowserClient
from cnvd_session import DEFAULT_COOKIES_FILE, parse_cookie_string
from cnvd_utils import BootstrapError, get_current_time


def login_and_save_cookies(path=DEFAULT_COOKIES_FILE, headless=False, timeout=120.0, settle_delay=5.0):
    """
    打开浏览器通过JSL校验并保存Cookie，供 main.py --session static 使用

    headless=False 时可以在浏览器里手动处理验证码，所以默认超时放宽到120秒
    """
    print(f'[{get_current_time()}][+] 启动浏览器...')
    client = CNVDBrowserClient(headless=headless, executable_path=os.environ.get(CHROME_PATH_ENV))
    try:
        cookie_str = client.ensure_clearance(timeout=timeout, settle_delay=settle_delay)
    finally:
        client.stop()

    # 将 cookies 保存为 json
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(parse_cookie_string(cookie_str), f, ensure_ascii=False, indent=4)
    print(f'[{get_current_time()}][+] Cookies 已保存到 {path}')
    # 同时也打印出 cookie string 方便直接复制
    print(f'Cookie String: {cookie_str}')
    return cookie_str


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='获取CNVD校验Cookie并保存')
    parser.add_argument('--output', default=DEFAULT_COOKIES_FILE, help='Cookie文件路径')
    parser.add_argument('--headless', action='store_true', help='使用无头浏览器')
    parser.add_argument('--timeout', type=float, default=120.0, help='超时秒数')
    args = parser.parse_args()
    try:
        login_and_save_cookies(args.output, headless=args.headless, timeout=args.timeout)
    except BootstrapError as e:
        print(f'[{get_current_time()}][!] 获取Cookie失败: {e}')
