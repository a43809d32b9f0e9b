"""
HTML sanitizer for email bodies.

Allowlist approach: only known-safe formatting tags and attributes survive.
Active content (scripts, frames, embeds, forms) is removed together with
its content; unknown tags are unwrapped so their text is kept. Remote
resources (img, video, audio) are not on the allowlist, so nothing loads
from third-party servers when a message is opened.
"""

import re
from typing import Optional

from bs4 import BeautifulSoup, Comment

# Removed with everything inside them
DANGEROUS_TAGS = frozenset({
    "script", "style", "iframe", "object", "embed", "applet",
    "form", "input", "textarea", "select", "button",
    "link", "meta", "base", "svg", "math",
})

ALLOWED_TAGS = frozenset({
    # Text formatting
    "p", "br", "span", "strong", "em", "b", "i", "u", "s",
    "sub", "sup", "small", "mark", "abbr",
    # Structure
    "div", "section", "article", "header", "footer", "main",
    # Lists
    "ul", "ol", "li", "dl", "dt", "dd",
    # Tables (email layouts are mostly tables)
    "table", "thead", "tbody", "tfoot", "tr", "td", "th",
    "caption", "colgroup", "col",
    # Links and headings
    "a", "h1", "h2", "h3", "h4", "h5", "h6",
    # Blocks
    "blockquote", "pre", "code", "hr",
    # Legacy email markup
    "center", "font",
})

ALLOWED_ATTRIBUTES = frozenset({
    "style", "class", "id", "href", "target", "rel", "title", "dir", "lang",
    "colspan", "rowspan", "width", "height", "align", "valign",
    "border", "cellpadding", "cellspacing", "bgcolor", "color", "face", "size",
})

_UNSAFE_URL = re.compile(r"^\s*(javascript|vbscript|data):", re.IGNORECASE)


def _safe_href(value: Optional[str]) -> bool:
    if value is None:
        return False
    # Browsers ignore embedded control characters and whitespace in schemes
    compact = re.sub(r"[\x00-\x20]+", "", value)
    return not _UNSAFE_URL.match(compact)


def sanitize_email_html(html: str) -> str:
    """
    Sanitize an email's HTML body for inline rendering.

    Args:
        html: Raw (decoded) text/html body

    Returns:
        Sanitized HTML string

    Usage:
        safe = sanitize_email_html('<p onclick="x()">Hi</p><script>evil()</script>')
        # '<p>Hi</p>'
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")

    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    for element in soup.find_all(DANGEROUS_TAGS):
        element.decompose()

    for element in soup.find_all(True):
        if element.name not in ALLOWED_TAGS:
            element.unwrap()
            continue

        for attribute in list(element.attrs):
            name = attribute.lower()
            if name.startswith("on") or name not in ALLOWED_ATTRIBUTES:
                del element.attrs[attribute]
            elif name == "href" and not _safe_href(element.attrs[attribute]):
                del element.attrs[attribute]

        if element.name == "a":
            element.attrs["target"] = "_blank"
            element.attrs["rel"] = "noopener noreferrer"

    return str(soup)
