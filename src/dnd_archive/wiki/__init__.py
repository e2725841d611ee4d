"""
Wiki scraping: URL building, page retrieval and entity parsing.
"""

from .benefits import BenefitExtractor, RegexBenefitExtractor
from .fetcher import FetchFailure, FetchResult, WikiFetcher
from .parsers import ParseError, parse_feat_html, parse_item_html, parse_reference_html, parse_spell_html
from .urls import slugify, url_for

__all__ = [
    "BenefitExtractor",
    "FetchFailure",
    "FetchResult",
    "ParseError",
    "RegexBenefitExtractor",
    "WikiFetcher",
    "parse_feat_html",
    "parse_item_html",
    "parse_reference_html",
    "parse_spell_html",
    "slugify",
    "url_for",
]
