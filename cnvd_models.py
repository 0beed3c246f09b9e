from dataclasses import dataclass, field, replace

from cnvd_utils import HAZARD_UNKNOWN

DETAIL_FIELDS = ('product', 'description', 'types', 'reference', 'attachment')


@dataclass(frozen=True)
class ListingRow:
    """列表页中的一行，只在单次爬取中使用"""
    detail_url: str
    title: str
    hazard: str
    published_date: str
    cnvd_id: str


@dataclass(frozen=True)
class VulnItem:
    """
    CNVD漏洞记录

    complete 为 True 表示字段来自详情页；为 False 表示详情页获取失败，
    只有列表页能提供的 title/url/cnvd_id/hazard/published_date，其余字段为空
    """
    url: str
    title: str
    cnvd_id: str
    published_date: str
    hazard: str = HAZARD_UNKNOWN
    product: str = ''
    description: str = ''
    types: str = ''
    reference: str = ''
    attachment: str = ''
    complete: bool = True

    @classmethod
    def from_row(cls, row):
        """详情页失败时，用列表页数据构造部分记录"""
        return cls(
            url=row.detail_url,
            title=row.title,
            cnvd_id=row.cnvd_id,
            published_date=row.published_date,
            hazard=row.hazard,
            complete=False,
        )

    def is_valid(self):
        return bool(self.url and self.title and self.published_date and self.cnvd_id)

    def to_dict(self):
        return {
            'url': self.url,
            'title': self.title,
            'cnvd_id': self.cnvd_id,
            'publishedDate': self.published_date,
            'hazard': self.hazard,
            'product': self.product,
            'description': self.description,
            'types': self.types,
            'reference': self.reference,
            'attachment': self.attachment,
            'complete': self.complete,
        }

    def translated(self, translate, fields=('title', 'description')):
        """
        返回翻译后的新记录，原记录不变

        translate: 调用方提供的翻译函数 text -> text，异常直接抛给调用方
        """
        changes = {}
        for name in fields:
            value = getattr(self, name)
            if value:
                changes[name] = translate(value)
        return replace(self, **changes)


@dataclass
class CrawlResult:
    """一次爬取的结果汇总"""
    items: list = field(default_factory=list)
    dropped_rows: list = field(default_factory=list)
    listing_errors: list = field(default_factory=list)

    def __len__(self):
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    @property
    def complete_count(self):
        return sum(1 for item in self.items if item.complete)

    @property
    def partial_count(self):
        return len(self.items) - self.complete_count

    @property
    def fallback_ratio(self) -> float:
        if not self.items:
            return 0.0
        return self.partial_count / len(self.items)

    def partial_items(self):
        return [item for item in self.items if not item.complete]
