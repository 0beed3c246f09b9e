import pytest

from cnvd_fetcher import FetchedPage
from cnvd_session import SessionProvider
from cnvd_utils import BootstrapError, FetchError

LIST_URL = 'https://www.cnvd.org.cn/flaw/list.htm?flag=true'
COOKIES = '__jsluid_s=abc123; JSESSIONID=XYZ; __jsl_clearance_s=1700000000.1|0|token'


def list_row(href, title, hazard, date):
    return f"""
        <tr class="current">
          <td width="45%"><a href="{href}" title="{title}">{title}</a></td>
          <td><span class="red"></span>{hazard}</td>
          <td>0</td>
          <td>0</td>
          <td>12</td>
          <td width="13%">{date}</td>
        </tr>"""


def list_page(*rows):
    return f"""<html><head><meta charset="utf-8"></head><body>
    <div class="mw Main clearfix">
      <div class="blkContainer">
        <div>
          <div class="tabtitle">漏洞列表</div>
          <div>
            <table class="tlist">
              <thead><tr><th>漏洞名称</th><th>危害级别</th><th>点击数</th><th>评论</th><th>关注</th><th>时间</th></tr></thead>
              <tbody>{''.join(rows)}</tbody>
            </table>
          </div>
        </div>
      </div>
    </div></body></html>"""


def detail_page(title, cnvd_id, date='2024-03-01', hazard='高 (AV:N/AC:L/Au:N/C:C/I:C/A:C)',
                product='Acme Router\n\n   AR-100   v1.2', description='Acme Router存在命令执行漏洞。\n  攻击者可利用该漏洞\t执行任意命令。',
                types='通用型漏洞', reference='https://example.com/advisory', attachment='附件暂不公开'):
    return f"""<html><head><meta charset="utf-8"></head><body>
    <div class="mw Main clearfix">
      <div class="blkContainer">
        <div class="blkContainerPblk">
          <div class="blkContainerSblk">
            <h1>{title}</h1>
            <div class="blkContainerSblkCon clearfix">
              <div class="tableDiv">
                <table class="gg_detail">
                  <tbody>
                    <tr><td class="alignRight">CNVD-ID</td><td>{cnvd_id}</td></tr>
                    <tr><td class="alignRight">公开日期</td><td>{date}</td></tr>
                    <tr><td class="alignRight">危害级别</td><td>{hazard}</td></tr>
                    <tr><td class="alignRight">影响产品</td><td>{product}</td></tr>
                    <tr><td class="alignRight">CVE ID</td><td>CVE-2024-0001</td></tr>
                    <tr><td class="alignRight">漏洞描述</td><td>{description}</td></tr>
                    <tr><td class="alignRight">漏洞类型</td><td>{types}</td></tr>
                    <tr><td class="alignRight">参考链接</td><td>{reference}</td></tr>
                    <tr><td class="alignRight">漏洞解决方案</td><td>厂商已发布了漏洞修复程序。</td></tr>
                    <tr><td class="alignRight">漏洞附件</td><td>{attachment}</td></tr>
                  </tbody>
                </table>
              </div>
            </div>
          </div>
        </div>
      </div>
    </div></body></html>"""


class FakeFetcher:
    """按URL返回预设页面；值为异常时抛出"""

    def __init__(self, pages=None, list_pages=None):
        self.pages = pages or {}
        self.list_pages = list(list_pages or [])
        self.requests = []
        self.closed = False

    def _respond(self, url, value):
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise FetchError(url, 'HTTP 404', status=404)
        return FetchedPage(url, 200, value)

    def get(self, url):
        self.requests.append(('GET', url, None))
        return self._respond(url, self.pages.get(url))

    def post(self, url, data):
        self.requests.append(('POST', url, data))
        value = self.list_pages.pop(0) if self.list_pages else list_page()
        return self._respond(url, value)

    def close(self):
        self.closed = True


class StubSessionProvider(SessionProvider):
    def __init__(self, cookies=COOKIES, error=None):
        self.cookies = cookies
        self.error = error
        self.calls = []

    def bootstrap(self, timeout):
        self.calls.append(timeout)
        if self.error:
            raise BootstrapError(self.error)
        return self.cookies


@pytest.fixture
def stub_provider():
    return StubSessionProvider()
