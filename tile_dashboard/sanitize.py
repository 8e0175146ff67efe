# tile_dashboard/sanitize.py
"""
Allow-list HTML sanitizer in front of everything the dashboard renders as
HTML or Markdown (tile descriptions, note columns, error messages).

bleach does the tag/attribute/protocol filtering. Two things it does not
cover are handled here first: the bodies of <script>/<style> elements (bleach
strips the tags but keeps their text) and Markdown link syntax, which is not
HTML and so never reaches bleach's protocol check.
"""
from __future__ import annotations
import html
import re
from typing import Any, Dict, Iterable, List, Optional

import bleach
from dash import dcc

from tile_dashboard.config import DEFAULTS

_DROP_BODY_RE = re.compile(r"<(script|style)\b[^>]*>.*?(</\1\s*>|\Z)", re.IGNORECASE | re.DOTALL)
_MD_INLINE_LINK_RE = re.compile(r"(\]\(\s*)(<[^>\n]*>|[^\s)]+)")
_MD_LINK_DEF_RE = re.compile(r"^([ \t]{0,3}\[[^\]\n]+\]:[ \t]*)(<[^>\n]*>|\S+)", re.MULTILINE)
_URL_SCHEME_RE = re.compile(r"([a-zA-Z][a-zA-Z0-9+.-]*):")
# browsers ignore ASCII whitespace and control characters inside a scheme
_URL_JUNK_RE = re.compile(r"[\x00-\x20\x7f]+")


class Sanitizer:
    def __init__(
        self,
        tags: Optional[Iterable[str]] = None,
        attributes: Optional[Dict[str, List[str]]] = None,
        protocols: Optional[Iterable[str]] = None,
    ):
        dflt = DEFAULTS["sanitize"]
        self.tags = frozenset(dflt["tags"] if tags is None else tags)
        self.attributes = dict(dflt["attributes"] if attributes is None else attributes)
        self.protocols = frozenset(dflt["protocols"] if protocols is None else protocols)

    def _blocked_target(self, target: str) -> bool:
        # Markdown decodes entity references in link targets (`javascript&#58;`)
        url = _URL_JUNK_RE.sub("", html.unescape(target)).lstrip("<")
        m = _URL_SCHEME_RE.match(url)
        return m is not None and m.group(1).lower() not in self.protocols

    def _neutralize_md_links(self, text: str) -> str:
        """Blank inline link targets and reference definitions with a disallowed scheme."""
        def repl(m: re.Match) -> str:
            if self._blocked_target(m.group(2)):
                return m.group(1) + "#blocked"
            return m.group(0)
        text = _MD_INLINE_LINK_RE.sub(repl, text)
        return _MD_LINK_DEF_RE.sub(repl, text)

    def clean_html(self, text: Any) -> str:
        if text is None:
            return ""
        text = _DROP_BODY_RE.sub("", str(text))
        return bleach.clean(
            text,
            tags=self.tags,
            attributes=self.attributes,
            protocols=self.protocols,
            strip=True,
            strip_comments=True,
        )

    def clean_markdown(self, text: Any) -> str:
        return self._neutralize_md_links(self.clean_html(text))

    def clean_text(self, text: Any) -> str:
        """Escape all markup; safe to embed in HTML."""
        if text is None:
            return ""
        return bleach.clean(str(text), tags=frozenset(), strip=False)

    def strip_tags(self, text: Any) -> str:
        """Drop all markup and return plain text (for components that never parse HTML)."""
        if text is None:
            return ""
        text = _DROP_BODY_RE.sub("", str(text))
        return html.unescape(bleach.clean(text, tags=frozenset(), strip=True, strip_comments=True))

    def render_markdown(self, text: Any, **kwargs) -> dcc.Markdown:
        return dcc.Markdown(self.clean_markdown(text), dangerously_allow_html=True, **kwargs)

    def sanitize_records(self, records: List[Dict[str, Any]], columns: Iterable[str]) -> List[Dict[str, Any]]:
        cols = set(columns)
        out = []
        for rec in records:
            clean = dict(rec)
            for c in cols:
                if isinstance(clean.get(c), str):
                    clean[c] = self.strip_tags(clean[c])
            out.append(clean)
        return out


def from_config(cfg: Dict[str, Any]) -> Sanitizer:
    s = cfg.get("sanitize") or {}
    return Sanitizer(s.get("tags"), s.get("attributes"), s.get("protocols"))
