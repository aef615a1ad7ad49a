"""
解析器模块
"""
from parsers.base import BaseParser
from parsers.page_parser import PageParser

__all__ = [
    'BaseParser',
    'PageParser',
]
