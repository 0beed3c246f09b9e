import requests
from deep_translator import GoogleTranslator
from deep_translator.exceptions import BaseError, RequestError, TooManyRequests

from cnvd_utils import CNVDError, get_current_time

# 需要翻译的文本字段
TRANSLATE_FIELDS = ('title', 'product', 'description', 'types')


class TranslationError(CNVDError):
    pass


def cn_to_en(text):
    """中文 -> 英文，源语言自动识别"""
    if not text or not text.strip():
        return text
    try:
        translated = GoogleTranslator(source='auto', target='en').translate(text)
    except (BaseError, RequestError, TooManyRequests, requests.exceptions.RequestException) as e:
        raise TranslationError(f'翻译失败: {e}') from e
    if not translated:
        raise TranslationError(f'翻译结果为空: {text[:30]}')
    return translated


def translate_items(items, translate=cn_to_en, fields=TRANSLATE_FIELDS):
    """逐条翻译，某条翻译失败时保留原文记录，返回新列表"""
    results = []
    failed = 0
    for i, item in enumerate(items, 1):
        try:
            results.append(item.translated(translate, fields=fields))
        except TranslationError as e:
            failed += 1
            print(f'[{get_current_time()}][!] {item.cnvd_id} {e}，保留原文')
            results.append(item)
        if i % 10 == 0:
            print(f'[{get_current_time()}][→] 翻译进度: {i}/{len(items)}')
    print(f'[{get_current_time()}][✓] 翻译完成: {len(items) - failed} 成功, {failed} 失败')
    return results
