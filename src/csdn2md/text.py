"""String-level cleaning helpers shared by the converter and the asset sink."""

from __future__ import annotations

import base64
import hashlib
import re

INVISIBLE_CHARS_RE = re.compile(
    "[\u200b-\u200f\u202a-\u202e\u2060-\u206f\ufeff\u00ad\u034f\u061c\u180e\u2800\u3164\uffa0\ufff9-\ufffb]"
)
WHITESPACE_RUN_RE = re.compile(r"\s{2,}")
KATEX_SEGMENT_SPLIT_RE = re.compile(r"\s{10,}")
URL_TAIL_RE = re.compile(r"[?#@!$&'()*+,;=].*$", re.DOTALL)
UNSAFE_FILENAME_RE = re.compile(r'[\\/:*?"<>|]')

# Stretchy-delimiter pieces KaTeX draws in its HTML layer; the MathML layer carries the
# plain bracket instead, so the HTML text only lines up after this mapping.
KATEX_GLYPHS = str.maketrans(
    {
        "⎧": "",
        "⎨": "{",
        "⎩": "",
        "⎫": "",
        "⎬": "}",
        "⎭": "",
        "⎡": "[",
        "⎢": "",
        "⎣": "",
        "⎤": "]",
        "⎥": "",
        "⎦": "",
    }
)


def strip_invisible(text: str) -> str:
    return INVISIBLE_CHARS_RE.sub("", text or "")


def clear_special_chars(text: str) -> str:
    cleaned = WHITESPACE_RUN_RE.sub("", text or "")
    cleaned = strip_invisible(cleaned)
    return cleaned.translate(KATEX_GLYPHS)


def longest_katex_segment(raw_mathml_text: str) -> str:
    best = ""
    for segment in KATEX_SEGMENT_SPLIT_RE.split(raw_mathml_text or ""):
        if len(segment) > len(best):
            best = segment
    return best.strip()


def clean_url(url: str) -> str:
    return URL_TAIL_RE.sub("", url or "")


def safe_filename(name: str) -> str:
    cleaned = UNSAFE_FILENAME_RE.sub("_", (name or "").strip())
    return cleaned or "document"


def shrink_html(html: str) -> str:
    html = re.sub(r">\s+<", "><", html or "")
    html = WHITESPACE_RUN_RE.sub(" ", html)
    return html.strip()


def collapse_spaces(text: str) -> str:
    return WHITESPACE_RUN_RE.sub(" ", text or "").strip()


def svg_to_base64(svg_text: str) -> str:
    return base64.b64encode(svg_text.encode("utf-8")).decode("ascii")


def content_hash(text: str, length: int = 16) -> str:
    digest = hashlib.sha256((text or "").encode("utf-8")).hexdigest()
    return digest[:length]
