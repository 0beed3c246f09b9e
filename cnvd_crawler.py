import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

from cnvd_browser_client import CHROME_PATH_ENV, BrowserSessionProvider
from cnvd_fetcher import ALLOWED_DOMAINS, RateLimitedFetcher
from cnvd_models import CrawlResult, VulnItem
from cnvd_parser import parse_detail_page, parse_list_page
from cnvd_session import CNVD_LIST_URL
from cnvd_utils import ConfigError, DetailParseError, FetchError, get_current_time


@dataclass
class CrawlConfig:
    """
    爬取配置

    列表页按 [start_offset, end_offset) 区间、每页 page_size 条翻页，站点不提供总数，
    所以范围必须显式给出。默认只取第一页（0~100）
    """
    page_size: int = 100
    start_offset: int = 0
    end_offset: int = 100
    list_parallelism: int = 2
    detail_parallelism: int = 2
    random_delay: float = 5.0
    list_timeout: float = 15.0
    detail_timeout: float = 15.0
    bootstrap_timeout: float = 20.0
    settle_delay: float = 5.0
    chrome_path: Optional[str] = field(default_factory=lambda: os.environ.get(CHROME_PATH_ENV))
    proxy: Optional[str] = None
    verify_ssl: bool = False
    fallback_warn_ratio: float = 0.5
    list_url: str = CNVD_LIST_URL

    def validate(self):
        if self.page_size < 1:
            raise ConfigError(f'page_size must be >= 1, got {self.page_size}')
        if self.start_offset < 0:
            raise ConfigError(f'start_offset must be >= 0, got {self.start_offset}')
        if self.end_offset < self.start_offset:
            raise ConfigError(f'end_offset ({self.end_offset}) < start_offset ({self.start_offset})')
        for name in ('list_parallelism', 'detail_parallelism'):
            if getattr(self, name) < 1:
                raise ConfigError(f'{name} must be >= 1, got {getattr(self, name)}')
        for name in ('list_timeout', 'detail_timeout', 'bootstrap_timeout'):
            if getattr(self, name) <= 0:
                raise ConfigError(f'{name} must be > 0, got {getattr(self, name)}')
        for name in ('random_delay', 'settle_delay'):
            if getattr(self, name) < 0:
                raise ConfigError(f'{name} must be >= 0, got {getattr(self, name)}')
        if not 0 <= self.fallback_warn_ratio <= 1:
            raise ConfigError(f'fallback_warn_ratio must be within [0, 1], got {self.fallback_warn_ratio}')
        return self


class ListPaginator:
    """
    列表页翻页

    列表页只能通过表单 POST {max, offset} 翻页。按 offset 递增逐页请求，
    直到到达 end_offset 或某页没有可用行
    """

    def __init__(self, fetcher, list_url=CNVD_LIST_URL):
        self.fetcher = fetcher
        self.list_url = f'{list_url}?flag=true'
        self.dropped_rows = []
        self.errors = []

    def pages(self, page_size, start_offset, end_offset):
        for offset in range(start_offset, end_offset, page_size):
            post_data = {'max': str(page_size), 'offset': str(offset)}
            try:
                page = self.fetcher.post(self.list_url, post_data)
            except FetchError as e:
                print(f'[{get_current_time()}][!] 列表页请求失败 offset={offset}: {e}')
                self.errors.append((offset, str(e)))
                return

            rows, dropped = parse_list_page(page.text, page.url)
            for page_url, reason in dropped:
                print(f'[{get_current_time()}][!] 列表行格式异常已丢弃 ({page_url} offset={offset}): {reason}')
            self.dropped_rows.extend(dropped)

            if not rows:
                print(f'[{get_current_time()}][+] offset={offset} 没有更多数据，停止翻页')
                return
            print(f'[{get_current_time()}][+] offset={offset} 获取到 {len(rows)} 条')
            yield rows

    def paginate(self, page_size, start_offset, end_offset):
        for rows in self.pages(page_size, start_offset, end_offset):
            yield from rows


class DetailResolver:
    """列表行 -> 详情记录；失败不重试，返回 (None, False) 交给调用方降级"""

    def __init__(self, fetcher):
        self.fetcher = fetcher

    def resolve(self, row):
        try:
            page = self.fetcher.get(row.detail_url)
            item = parse_detail_page(page.text, page.url)
        except (FetchError, DetailParseError) as e:
            print(f'[{get_current_time()}][!] {row.cnvd_id} - 详情页获取失败: {e}')
            return None, False
        return item, True


class CNVDCrawler:
    def __init__(self, config, session_provider=None):
        self.config = config.validate()
        self.session_provider = session_provider

    def _default_provider(self):
        return BrowserSessionProvider(
            executable_path=self.config.chrome_path,
            settle_delay=self.config.settle_delay,
            proxy=self.config.proxy,
        )

    def make_fetchers(self, cookies):
        """列表页和详情页各自一个限速器，详情页额外轮换User-Agent"""
        cfg = self.config
        list_fetcher = RateLimitedFetcher(
            cookies, allowed_domains=ALLOWED_DOMAINS, parallelism=cfg.list_parallelism,
            random_delay=cfg.random_delay, timeout=cfg.list_timeout, proxy=cfg.proxy,
            verify_ssl=cfg.verify_ssl, name='list',
        )
        detail_fetcher = RateLimitedFetcher(
            cookies, allowed_domains=ALLOWED_DOMAINS, parallelism=cfg.detail_parallelism,
            random_delay=cfg.random_delay, timeout=cfg.detail_timeout, rotate_user_agent=True,
            proxy=cfg.proxy, verify_ssl=cfg.verify_ssl, name='detail',
        )
        return list_fetcher, detail_fetcher

    def _resolve_or_fallback(self, resolver, row):
        item, complete = resolver.resolve(row)
        if complete:
            print(f'[{get_current_time()}][✓] {item.cnvd_id} - 详情获取成功')
            return item
        print(f'[{get_current_time()}][✗] {row.cnvd_id} - 仅保留列表页信息')
        return VulnItem.from_row(row)

    def run(self):
        cfg = self.config
        provider = self.session_provider or self._default_provider()
        print(f'[{get_current_time()}][+] 初始化会话...')
        # 会话失败直接终止本次爬取
        cookies = provider.bootstrap(cfg.bootstrap_timeout)
        print(f'[{get_current_time()}][+] 设置Cookie: {cookies}')

        list_fetcher, detail_fetcher = self.make_fetchers(cookies)
        result = CrawlResult()
        seen = set()
        try:
            paginator = ListPaginator(list_fetcher, cfg.list_url)
            resolver = DetailResolver(detail_fetcher)
            with ThreadPoolExecutor(max_workers=cfg.detail_parallelism) as pool:
                for rows in paginator.pages(cfg.page_size, cfg.start_offset, cfg.end_offset):
                    fresh = []
                    for row in rows:
                        if row.detail_url in seen:
                            print(f'[{get_current_time()}][→] {row.cnvd_id} - 重复条目，跳过')
                            continue
                        seen.add(row.detail_url)
                        fresh.append(row)
                    # map 保持列表页顺序
                    for item in pool.map(lambda r: self._resolve_or_fallback(resolver, r), fresh):
                        if item.is_valid():
                            result.items.append(item)
                        else:
                            print(f'[{get_current_time()}][!] 记录缺少必要字段，已丢弃: {item.url}')
            result.dropped_rows = paginator.dropped_rows
            result.listing_errors = paginator.errors
        finally:
            list_fetcher.close()
            detail_fetcher.close()

        self.report(result)
        return result

    def report(self, result):
        print(f'\n[{get_current_time()}][+] ========== 爬取完成 ==========')
        print(f'[{get_current_time()}][+] 记录总数: {len(result)}')
        print(f'[{get_current_time()}][+] 完整记录: {result.complete_count}')
        print(f'[{get_current_time()}][+] 部分记录: {result.partial_count}')
        print(f'[{get_current_time()}][+] 丢弃的列表行: {len(result.dropped_rows)}')
        print(f'[{get_current_time()}][+] 降级比例: {result.fallback_ratio:.2%}')
        if result.listing_errors:
            print(f'[{get_current_time()}][!] 列表页请求失败 {len(result.listing_errors)} 次，翻页提前结束')
        if result.items and result.fallback_ratio > self.config.fallback_warn_ratio:
            print(f'[{get_current_time()}][!] 降级比例超过 {self.config.fallback_warn_ratio:.0%}，会话Cookie可能已失效')


def crawl_cnvd(config=None, session_provider=None):
    """完整爬取流程，会话初始化失败抛出 BootstrapError"""
    return CNVDCrawler(config or CrawlConfig(), session_provider).run()

