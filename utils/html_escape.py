"""
HTML escaping for operator notifications (Telegram HTML parse mode).

Customer names, shipping data, partner error messages and tracking links all
come from outside the service and are escaped before they are embedded.
"""

import html
from typing import Optional


def safe_html(text: Optional[str]) -> str:
    """
    Escapes HTML special characters in externally supplied text.

    Examples:
        >>> safe_html("Printful: <b>out of stock</b>")
        "Printful: &lt;b&gt;out of stock&lt;/b&gt;"

        >>> safe_html(None)
        ""
    """
    if text is None:
        return ""
    return html.escape(str(text), quote=True)


def safe_url(url: Optional[str]) -> str:
    """
    Returns an escaped http(s) URL, or "" for anything else
    (javascript:, data: and similar schemes from a tampered webhook).
    """
    if not url:
        return ""

    url_str = str(url).strip()
    if not url_str.startswith(("http://", "https://")):
        return ""

    return html.escape(url_str, quote=True)
