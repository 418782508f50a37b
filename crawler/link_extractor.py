import logging
from typing import List, Optional

import lxml.html
from bs4 import BeautifulSoup, Tag
from lxml import etree
from soupsieve import SelectorSyntaxError

from models import Selector, SelectorKind
from utils import make_absolute_url, is_http_url, is_valid_url

logger = logging.getLogger(__name__)


def _reparse(el) -> Optional[Tag]:
    markup = lxml.html.tostring(el, encoding="unicode", with_tail=False)
    return BeautifulSoup(markup, "html.parser").find()


def _lxml_to_tags(elements) -> List[Tag]:
    """Convert lxml elements to bs4 tags whose ``.parent`` is their containing element.

    Each parent is serialized once and the match is picked out of it by its
    position among the parent's child elements.
    """
    children = {}
    out = []
    for el in elements:
        parent = el.getparent()
        if parent is None:
            tag = _reparse(el)
        else:
            if parent not in children:
                wrapper = _reparse(parent)
                children[parent] = wrapper.find_all(True, recursive=False) if wrapper is not None else []
            siblings = [c for c in parent if isinstance(c.tag, str)]
            idx = siblings.index(el)
            kids = children[parent]
            tag = kids[idx] if idx < len(kids) else _reparse(el)
        if tag is not None:
            out.append(tag)
    return out


def select(root: Tag, selector: Selector, tree=None) -> List[Tag]:
    """Evaluate ``selector`` under ``root`` and return matches in document order.

    CSS runs on the BeautifulSoup tree directly. XPath runs on an lxml tree
    (``tree`` if given, otherwise one parsed from ``root``) and element
    results are brought back as BeautifulSoup tags; attribute and text
    results are ignored.
    """
    if selector.kind == SelectorKind.CSS:
        return list(root.select(selector.query))

    if tree is None:
        tree = lxml.html.fromstring(str(root) or "<html></html>")
    result = tree.xpath(selector.query)
    if not isinstance(result, list):
        return []
    return _lxml_to_tags([el for el in result if isinstance(el, etree._Element) and isinstance(el.tag, str)])


def select_text(root: Tag, selector: Selector) -> str:
    for el in select(root, selector):
        text = el.get_text(" ", strip=True)
        if text:
            return text
    return ""


class PageDocument:
    def __init__(self, url: str, html: str):
        self.url = url
        self.soup = BeautifulSoup(html or "", "html.parser")
        self._html = html or ""
        self._tree = None

    def _xpath_tree(self):
        if self._tree is None:
            self._tree = lxml.html.fromstring(self._html or "<html></html>")
        return self._tree

    def select(self, selector: Selector) -> List[Tag]:
        try:
            if selector.kind == SelectorKind.XPATH:
                return select(self.soup, selector, tree=self._xpath_tree())
            return select(self.soup, selector)
        except (SelectorSyntaxError, ValueError, etree.XPathError, etree.ParserError) as e:
            logger.warning(f"selector {selector.kind.value}:{selector.query!r} failed on {self.url}: {e}")
            return []

    def extract_links(self, selectors: List[Selector], include_pattern: str = "", exclude_pattern: str = "") -> List[str]:
        """Links from every selector, in declaration then document order, first occurrence kept."""
        seen = set()
        out = []
        for sel in selectors:
            for el in self.select(sel):
                href = el.get("href")
                if not href:
                    continue
                abs_url = make_absolute_url(self.url, href)
                if not abs_url or not is_http_url(abs_url):
                    continue
                if not is_valid_url(abs_url, include_pattern, exclude_pattern):
                    continue
                if abs_url not in seen:
                    seen.add(abs_url)
                    out.append(abs_url)
        return out
