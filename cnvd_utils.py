import re

from datetime import datetime

RX_CNVD = re.compile(r'CNVD-\d{4}-\d+', re.IGNORECASE)
RX_SPACE = re.compile(r'\s+')

HAZARD_LOW = 'low'
HAZARD_MEDIUM = 'medium'
HAZARD_HIGH = 'high'
HAZARD_UNKNOWN = 'unknown'

# 顺序固定：中 -> 高 -> 低，先命中者为准
HAZARD_TOKENS = (
    ('中', HAZARD_MEDIUM),
    ('高', HAZARD_HIGH),
    ('低', HAZARD_LOW),
)


class CNVDError(Exception):
    """CNVD爬虫异常基类"""


class ConfigError(CNVDError):
    """配置错误，在发起任何请求之前抛出"""


class BootstrapError(CNVDError):
    """会话初始化失败（浏览器启动失败、超时或缺少校验Cookie）"""


class FetchError(CNVDError):
    """单个请求失败"""

    def __init__(self, url, reason, status=None):
        super().__init__(f'{url}: {reason}')
        self.url = url
        self.reason = reason
        self.status = status


class DomainNotAllowed(FetchError):
    """目标域名不在白名单内，请求未发送"""

    def __init__(self, url):
        super().__init__(url, 'domain not allowed')


class DetailParseError(CNVDError):
    """详情页结构不符合预期"""


class CNVDIDNotFound(CNVDError):
    """文本中没有CNVD编号"""


def get_current_time():
    """获取当前时间并格式化"""
    return datetime.now().strftime("%Y/%m/%d %H:%M:%S")


def parse_cn_hazard(cn):
    """危害级别中文转英文"""
    if not cn:
        return HAZARD_UNKNOWN
    for token, level in HAZARD_TOKENS:
        if token in cn:
            return level
    return HAZARD_UNKNOWN


def extract_cnvd_id(text):
    """
    从文本（通常是详情页URL）中提取CNVD编号，统一转为大写

    没有匹配时抛出 CNVDIDNotFound
    """
    match = RX_CNVD.search(text or '')
    if match is None:
        raise CNVDIDNotFound(f'no CNVD id in {text!r}')
    return match.group(0).upper()


def collapse_whitespace(text):
    """把连续空白（空格、制表符、换行）替换为单个空格，不做首尾裁剪"""
    return RX_SPACE.sub(' ', text or '')


def replace_list(data_list):
    """清洗列表数据"""
    return [data.strip() for data in data_list if data and data.strip()]
