from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from lxml import etree

from cnvd_fetcher import ALLOWED_DOMAINS
from cnvd_models import ListingRow, VulnItem
from cnvd_utils import (CNVDIDNotFound, DetailParseError, collapse_whitespace, extract_cnvd_id, parse_cn_hazard,
                        replace_list)

LIST_ROW_SELECTOR = 'div.blkContainer table tr.current'

ATTACHMENT_HIDDEN = '附件暂不公开'

# 详情页表格标签 -> 字段
DETAIL_LABELS = {
    'CNVD-ID': 'cnvd_id',
    '公开日期': 'published_date',
    '危害级别': 'hazard',
    '影响产品': 'product',
    '漏洞描述': 'description',
    '漏洞类型': 'types',
    '参考链接': 'reference',
    '漏洞附件': 'attachment',
}


def parse_list_page(html_content, page_url, allowed_domains=ALLOWED_DOMAINS):
    """
    解析CNVD列表页

    返回 (rows, dropped)，dropped 为 [(page_url, reason), ...]，
    缺少链接/标题/日期、链接指向站外或无法提取CNVD编号的行直接丢弃
    """
    allowed = tuple(d.lower() for d in allowed_domains)
    soup = BeautifulSoup(html_content, 'lxml')
    rows = []
    dropped = []

    for tr in soup.select(LIST_ROW_SELECTOR):
        tds = tr.find_all('td')
        link = title = hazard = published_date = ''
        if len(tds) > 0:
            a_tag = tds[0].find('a')
            if a_tag is not None:
                link = (a_tag.get('href') or '').strip()
                title = a_tag.get_text(strip=True)
        if len(tds) > 1:
            hazard = tds[1].get_text(strip=True)
        if len(tds) > 5:
            published_date = tds[5].get_text(strip=True)

        if not link or not title or not published_date:
            dropped.append((page_url, f'missing field: link={link!r} title={title!r} date={published_date!r}'))
            continue

        detail_url = urljoin(page_url, link)
        if (urlparse(detail_url).hostname or '').lower() not in allowed:
            dropped.append((page_url, f'off-site link {detail_url}'))
            continue
        try:
            cnvd_id = extract_cnvd_id(detail_url)
        except CNVDIDNotFound:
            dropped.append((page_url, f'no CNVD id in {detail_url}'))
            continue

        rows.append(ListingRow(
            detail_url=detail_url,
            title=title,
            hazard=parse_cn_hazard(hazard),
            published_date=published_date,
            cnvd_id=cnvd_id,
        ))

    return rows, dropped


def _cell_text(td):
    return ''.join(td.itertext()).strip()


def parse_detail_page(html_content, url):
    """解析CNVD详情页，结构不符时抛出 DetailParseError"""
    if not html_content or not html_content.strip():
        raise DetailParseError(f'{url}: empty page')
    try:
        data_html = etree.HTML(html_content)
    except (ValueError, etree.ParserError) as e:
        raise DetailParseError(f'{url}: {e}') from e
    if data_html is None:
        raise DetailParseError(f'{url}: unparseable page')

    containers = data_html.xpath('//div[contains(concat(" ", normalize-space(@class), " "), " blkContainerSblk ")]')
    if not containers:
        raise DetailParseError(f'{url}: detail container not found')
    container = containers[0]

    # 名称
    name_list = replace_list(container.xpath('.//h1//text()'))
    fields = {
        'url': url,
        'title': ' '.join(name_list),
    }

    for tr in container.xpath('.//div[contains(@class, "tableDiv")]//table//tr'):
        tds = tr.xpath('./td')
        if len(tds) < 2:
            continue
        key = DETAIL_LABELS.get(_cell_text(tds[0]))
        if key is None:
            continue
        value = _cell_text(tds[1])

        if key == 'cnvd_id':
            try:
                value = extract_cnvd_id(value)
            except CNVDIDNotFound as e:
                raise DetailParseError(f'{url}: {e}') from e
        elif key == 'hazard':
            value = parse_cn_hazard(value)
        elif key in ('product', 'description'):
            value = collapse_whitespace(value).strip()
        elif key == 'attachment' and ATTACHMENT_HIDDEN in value:
            value = ''
        fields[key] = value

    item = VulnItem(**fields) if 'cnvd_id' in fields and 'published_date' in fields else None
    if item is None or not item.is_valid():
        raise DetailParseError(f'{url}: missing title, CNVD-ID or publish date')
    return item
