"""Locate tables, forms and form controls in server rendered pages.

Lookups are tolerant of layout noise: a missing element is reported as
``None`` and never raises, so callers can treat it as an empty result.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")

FORM_CONTROLS = ("input", "select", "textarea", "button")

_BLOCK_TAGS = frozenset(
    {
        "address", "article", "aside", "blockquote", "dd", "div", "dl", "dt", "fieldset",
        "figcaption", "figure", "footer", "form", "h1", "h2", "h3", "h4", "h5", "h6",
        "header", "hr", "li", "main", "nav", "ol", "p", "pre", "section", "table",
        "tbody", "td", "tfoot", "th", "thead", "tr", "ul",
    }
)


def parse_document(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def body_of(doc: BeautifulSoup) -> Tag:
    return doc.body or doc


def own_text(element: Optional[Tag]) -> str:
    """Text of the element's direct text children, whitespace collapsed."""
    if element is None:
        return ""
    parts = [
        str(child)
        for child in element.children
        if isinstance(child, NavigableString) and not isinstance(child, Comment)
    ]
    return " ".join("".join(parts).split())


def full_text(element: Optional[Tag]) -> str:
    if element is None:
        return ""
    return " ".join(element.get_text(" ").split())


def text_br(element: Optional[Tag]) -> str:
    """Element text where each ``<br>`` becomes a line break."""
    if element is None:
        return ""
    chunks: List[str] = []
    for node in element.descendants:
        if isinstance(node, Comment):
            continue
        if isinstance(node, NavigableString):
            chunks.append(_WHITESPACE_RE.sub(" ", str(node)))
        elif node.name == "br":
            chunks.append("\n")
        elif node.name in _BLOCK_TAGS:
            chunks.append(" ")
    lines = "".join(chunks).split("\n")
    return "\n".join(" ".join(line.split()) for line in lines).strip()


def find_parent(element: Optional[Tag], tag_name: str) -> Optional[Tag]:
    if element is None:
        return None
    return element.find_parent(tag_name)


def find_table_by_headers(
    scope: Optional[Tag],
    labels: Sequence[str],
    cell_name: str = "th",
) -> Optional[Tag]:
    """Return the table whose header cells read ``labels`` as adjacent siblings.

    The first candidate in document order wins. Each following label must be
    the text of the very next sibling element of the previous header cell.
    """
    if scope is None or not labels:
        return None
    first, rest = labels[0], labels[1:]
    for candidate in scope.find_all(cell_name):
        if own_text(candidate) != first:
            continue
        cell: Optional[Tag] = candidate
        for label in rest:
            cell = cell.find_next_sibling() if cell is not None else None
            if cell is None or own_text(cell) != label:
                cell = None
                break
        if cell is None:
            continue
        return find_parent(candidate, "table")
    return None


def find_cell_starting_with(scope: Optional[Tag], prefix: str, cell_name: str = "td") -> Optional[Tag]:
    if scope is None:
        return None
    for cell in scope.find_all(cell_name):
        if own_text(cell).startswith(prefix):
            return cell
    return None


def find_form(doc: BeautifulSoup, name: str) -> Optional[Tag]:
    return body_of(doc).find("form", attrs={"name": name})


def find_div(doc: BeautifulSoup, class_name: str) -> Optional[Tag]:
    return body_of(doc).find("div", attrs={"class": class_name})


def select_by_name(form: Optional[Tag], name: str) -> Optional[Tag]:
    if form is None:
        return None
    return form.find(FORM_CONTROLS, attrs={"name": name})


def value(element: Optional[Tag]) -> str:
    if element is None:
        return ""
    if element.name == "textarea":
        return element.get_text()
    return element.get("value") or ""


def is_checked(element: Optional[Tag]) -> bool:
    return element is not None and element.has_attr("checked")


def options(select: Optional[Tag]) -> List[Tag]:
    if select is None:
        return []
    return select.find_all("option")


def selected_option(select: Optional[Tag]) -> Optional[Tag]:
    for option in options(select):
        if option.has_attr("selected"):
            return option
    return None


def class_names(element: Optional[Tag]) -> List[str]:
    if element is None:
        return []
    classes = element.get("class") or []
    if isinstance(classes, str):
        return classes.split()
    return list(classes)


def has_class(element: Optional[Tag], class_name: str) -> bool:
    return class_name in class_names(element)


def find_error(doc: BeautifulSoup) -> Optional[str]:
    """Text of the server's error banner, or ``None`` when the page has none."""
    cell = body_of(doc).find("td", attrs={"class": "error"})
    if cell is None:
        return None
    message = text_br(cell)
    if message:
        logger.debug("page reports error: %s", message)
    return message or None


def rows_of(table: Optional[Tag]) -> List[Tag]:
    if table is None:
        return []
    return table.find_all("tr")


def cells_of(row: Tag, names: Iterable[str] = ("td",)) -> List[Tag]:
    return row.find_all(list(names))


def script_texts(doc: BeautifulSoup) -> List[str]:
    return ["".join(str(child) for child in script.children) for script in doc.find_all("script")]
