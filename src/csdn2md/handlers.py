"""Per-element conversion rules.

Every handler takes ``(converter, node, context)`` and returns a ``Fragment``.
Handlers are registered by tag name in ``TAG_HANDLERS``; the dispatcher falls
back to ``handle_default`` for anything unregistered.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from bs4.element import NavigableString, PreformattedString, Tag

from .fragment import BLOCK, INLINE, Fragment, finalize
from .models import ConversionContext
from .text import clear_special_chars, longest_katex_segment, shrink_html, svg_to_base64

if TYPE_CHECKING:
    from .dispatch import NodeDispatcher

LOG = logging.getLogger("csdn2md")

TagHandler = Callable[["NodeDispatcher", Tag, ConversionContext], Fragment]
TAG_HANDLERS: Dict[str, TagHandler] = {}

CENTER_MARK = "data-csdn2md-center"
PIC_CENTER_SUFFIX = "#pic_center"
SEARCH_LINK_PREFIX = "https://so.csdn.net/so/search"
XHTML_NS = "http://www.w3.org/1999/xhtml"
FOOTNOTE_RETURN_GLYPHS = ("↩︎", "↩")
KATEX_DECORATIONS = ".MathJax_Display, .MathJax_Preview, .MathJax_Error"
ALIGN_MARKERS = {"center": ":---:", "right": "---:", "left": ":---"}
DIMENSION_RE = re.compile(r"\s*(\d+(?:\.\d+)?)\s*([a-zA-Z%]*)")
VIDEO_BOX_STYLE = "border: 3px solid gray;border-radius: 27px;overflow: hidden;"


def register(*tags: str) -> Callable[[TagHandler], TagHandler]:
    def decorator(func: TagHandler) -> TagHandler:
        for tag in tags:
            TAG_HANDLERS[tag] = func
        return func

    return decorator


def _class_attr(node: Tag) -> str:
    value = node.get("class")
    if isinstance(value, (list, tuple)):
        return " ".join(value)
    return value or ""


def _compact_style(node: Tag) -> str:
    return re.sub(r"\s+", "", node.get("style") or "").lower()


def _is_text(node: object) -> bool:
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def _single_text_child(node: Tag) -> bool:
    children = list(node.children)
    return len(children) == 1 and _is_text(children[0])


def _join_lines(lines: List[Fragment]) -> Fragment:
    parts: List[object] = []
    for index, line in enumerate(lines):
        if index:
            parts.append("\n")
        parts.append(line)
    return Fragment.join(parts)  # type: ignore[arg-type]


def mark_images_centered(node: Tag) -> None:
    for img in node.find_all("img"):
        img[CENTER_MARK] = "1"


def handle_default(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    return converter.process_children(node, context) + BLOCK


@register("script", "style", "noscript")
def handle_dropped(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    return Fragment()


@register("font", "td", "th")
def handle_transparent(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    return converter.process_children(node, context)


@register("h1", "h2", "h3", "h4", "h5", "h6")
def handle_heading(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    level = int(node.name[1])
    # Editors leave empty bookmark anchors in headings; they confuse title extraction.
    for anchor in node.find_all("a"):
        if anchor.decomposed:
            continue
        if not anchor.get_text().strip() and anchor.find(["img", "svg"]) is None:
            anchor.decompose()

    prefix = "#" * level + " "
    body = converter.process_children(node, context).strip().resolve_blocks("\n\n")
    lines = []
    for line in body.lines():
        text = line.plain_text().strip()
        if not text or ("<img" in text and "/>" in text):
            lines.append(line)
        else:
            lines.append(Fragment(prefix, line.strip_inline()))
    return Fragment(BLOCK, _join_lines(lines), BLOCK)


@register("p")
def handle_paragraph(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    if "img-center" in _class_attr(node):
        mark_images_centered(node)
        return converter.process_children(node, context) + BLOCK

    if node.get("id") == "main-toc":
        if context.enable_toc:
            return Fragment(BLOCK, "**目录**\n\n[TOC]", BLOCK)
        return Fragment()

    style = _compact_style(node)
    if "padding-left" in style:
        return Fragment()
    for alignment in ("center", "right"):
        if f"text-align:{alignment}" in style:
            inner = shrink_html(node.decode_contents())
            return Fragment(BLOCK, f'<div style="text-align:{alignment};">{inner}</div>', BLOCK)

    return Fragment(BLOCK, converter.process_children(node, context), BLOCK)


def _emphasis(opening: str, closing: str) -> TagHandler:
    def handler(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
        inner = converter.process_children(node, context).strip()
        if not inner.has_text():
            return Fragment()
        return Fragment(INLINE, opening, inner, closing, INLINE)

    return handler


register("strong", "b")(_emphasis("**", "**"))
register("em", "i")(_emphasis("*", "*"))
register("u")(_emphasis("<u>", "</u>"))
register("s", "strike")(_emphasis("~~", "~~"))


def _drop_first_newline(fragment: Fragment) -> Fragment:
    pieces = list(fragment.pieces)
    for index, piece in enumerate(pieces):
        if isinstance(piece, str) and "\n" in piece:
            pieces[index] = piece.replace("\n", "", 1)
            break
    return Fragment(*pieces)


@register("a")
def handle_anchor(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    classes = _class_attr(node)
    if "footnote-backref" in classes:
        return Fragment()

    href = node.get("href") or ""
    if "has-card" in classes:
        return Fragment(INLINE, f"[{node.get('title') or ''}]({href})", INLINE)

    text = converter.process_children(node, context).strip()
    if context.strip_search_engine_links and href.startswith(SEARCH_LINK_PREFIX):
        return text
    if (node.get("name") or "").startswith("OLE_LINK"):
        text = _drop_first_newline(text)
    if not text and not href:
        return Fragment()
    return Fragment(INLINE, "[", text, f"]({href})", INLINE)


def _dimension_style(prop: str, raw: Optional[str]) -> str:
    match = DIMENSION_RE.match(raw or "")
    if not match:
        return ""
    unit = match.group(2) or "px"
    return f"{prop}:{match.group(1)}{unit}; "


@register("img")
def handle_image(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    src = node.get("src") or ""
    alt = node.get("alt") or ""
    if "mathcode" in _class_attr(node):
        return Fragment(BLOCK, f"$$\n{alt}\n$$", BLOCK)

    centered = PIC_CENTER_SUFFIX in src or node.has_attr(CENTER_MARK) or context.force_image_centering
    lead = BLOCK if centered else INLINE

    if context.save_images_locally and not src.startswith("data:"):
        src = converter.asset_sink.localize_image(src, context.asset_dir_name, context.asset_file_prefix)

    height = node.get("height")
    width = node.get("width")
    if context.preserve_image_dimensions and (height or width):
        if height:
            size_style = _dimension_style("max-height", height)
        else:
            size_style = _dimension_style("max-width", width)
        image = f'<img src="{src}" alt="{alt}" style="{size_style}box-sizing:content-box;" />'
    else:
        image = f"![{alt}]({src})"
    return Fragment(lead, image, BLOCK)


@register("ul", "ol")
def handle_list(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    ordered = node.name == "ol"
    indent = "   " if ordered else "  "
    child_context = context.descend()
    LOG.debug("List <%s> at depth %d", node.name, child_context.list_nesting_depth)

    parts: List[object] = [BLOCK]
    for index, item in enumerate(node.find_all("li", recursive=False), start=1):
        marker = f"{index}. " if ordered else "- "
        # Blocks must become real blank lines before the indent is applied.
        body = converter.process_children(item, child_context).strip().resolve_blocks("\n\n")
        lines = body.lines()
        indented = [lines[0]] + [Fragment(indent, line) if line.has_text() else line for line in lines[1:]]
        parts.extend([marker, _join_lines(indented), BLOCK])
    return Fragment.join(parts)  # type: ignore[arg-type]


@register("blockquote")
def handle_blockquote(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    body = converter.process_children(node, context).strip().resolve_blocks("\n\n")
    quoted = [Fragment("> ", line) for line in body.lines()]
    return Fragment(BLOCK, _join_lines(quoted), BLOCK)


def detect_code_language(code: Tag) -> str:
    classes = _class_attr(code).split()
    for token in classes:
        if token.startswith("language-"):
            return token[len("language-") :]
    if classes and classes[0].startswith("hljs") and len(classes) > 1:
        return classes[1]
    return ""


def reconstruct_code_text(code: Tag) -> str:
    line_list = code.find("ol")
    if line_list is None:
        text = code.get_text()
        return text[:-1] if text.endswith("\n") else text
    return "\n".join(item.get_text() for item in line_list.find_all("li"))


@register("pre")
def handle_preformatted(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    code = node.find("code")
    if code is None:
        LOG.warning("Code block without <code> element, fencing raw text: %s", shrink_html(str(node))[:120])
        return Fragment(BLOCK, f"```\n{node.get_text().strip()}\n```", BLOCK)
    language = detect_code_language(code)
    return Fragment(BLOCK, f"```{language}\n{reconstruct_code_text(code)}\n```", BLOCK)


@register("code")
def handle_inline_code(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    text = node.get_text()
    runs = re.findall(r"`+", text)
    if not runs:
        return Fragment(INLINE, f"`{text}`", INLINE)
    fence = "`" * (max(len(run) for run in runs) + 1)
    return Fragment(INLINE, f"{fence} {text} {fence}", INLINE)


@register("hr")
def handle_horizontal_rule(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    if node.get("id") == "hr-toc":
        return Fragment()
    return Fragment(BLOCK, "---", BLOCK)


@register("br")
def handle_line_break(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    return Fragment("\n")


def _table_cell(converter: "NodeDispatcher", cell: Tag, context: ConversionContext) -> str:
    body = converter.dispatch(cell, context).strip().resolve_blocks("\n")
    text = re.sub(r"\n+", "<br />", finalize(body))
    return text.replace("|", "\\|")


@register("table")
def handle_table(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    rows = node.find_all("tr")
    if not rows:
        return Fragment()

    header_cells = rows[0].find_all(["th", "td"], recursive=False)
    width = len(header_cells)
    header = [_table_cell(converter, cell, context) for cell in header_cells]
    alignments = [ALIGN_MARKERS.get((cell.get("align") or "").lower(), ":---:") for cell in header_cells]

    lines = ["| " + " | ".join(header) + " |", "|" + "|".join(alignments) + "|"]
    for row in rows[1:]:
        cells = [_table_cell(converter, cell, context) for cell in row.find_all(["td", "th"], recursive=False)]
        cells += [""] * (width - len(cells))
        lines.append("| " + " | ".join(cells) + " |")
    return Fragment(BLOCK, "\n".join(lines), BLOCK)


@register("div")
def handle_div(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    classes = _class_attr(node)
    if "csdn-video-box" in classes:
        iframe = node.find("iframe")
        if iframe is not None:
            src = iframe.get("src") or ""
            caption = node.find("p")
            title = caption.get_text() if caption is not None else ""
            iframe["style"] = "width: 100%; aspect-ratio: 2;"
            link = f'<a class="link-info" href="{src}" rel="nofollow" title="{title}">{title}</a>'
            return Fragment(BLOCK, f'<div align="center" style="{VIDEO_BOX_STYLE}"> {link}{iframe}</div>', BLOCK)
    elif "toc" in classes and context.enable_toc:
        heading = node.find("h4")
        title = heading.get_text() if heading is not None else ""
        return Fragment(BLOCK, f"**{title}**\n\n[TOC]", BLOCK)
    return converter.process_children(node, context) + "\n"


def extract_katex_source(mathml_text: str, html_text: str) -> str:
    """Recover the TeX source from the two text layers KaTeX renders.

    The MathML layer reads as the rendered glyphs followed by the TeX
    annotation, so stripping the HTML layer's text off the front leaves the
    source. When sub/superscript reordering breaks that prefix relation, the
    longest whitespace-delimited chunk of the raw MathML text is used instead.
    """
    mathml = clear_special_chars(mathml_text)
    rendered = clear_special_chars(html_text)
    if mathml.startswith(rendered):
        return mathml[len(rendered) :].strip()
    LOG.debug("KaTeX layers out of order, using longest MathML segment")
    return longest_katex_segment(mathml_text)


def convert_katex(node: Tag, display: bool) -> Fragment:
    mathml_layer = node.select_one(".katex-mathml")
    html_layer = node.select_one(".katex-html")
    if mathml_layer is None or html_layer is None:
        LOG.warning("KaTeX element without MathML or HTML layer, formula dropped")
        return Fragment()
    for decoration in mathml_layer.select(KATEX_DECORATIONS):
        decoration.decompose()

    formula = extract_katex_source(mathml_layer.get_text(), html_layer.get_text())
    if display:
        return Fragment(BLOCK, f"$$\n{formula}\n$$", BLOCK)
    return Fragment(INLINE, f"${formula}$", INLINE)


@register("span")
def handle_span(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    classes = _class_attr(node)
    if "katex--inline" in classes:
        return convert_katex(node, display=False)
    if "katex--display" in classes:
        return convert_katex(node, display=True)

    style = node.get("style") or ""
    if context.preserve_colored_text and "color" in style and _single_text_child(node):
        return Fragment(f'<span style="{style}">', converter.process_children(node, context), "</span>")
    return converter.process_children(node, context)


@register("kbd")
def handle_keyboard(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    return Fragment(INLINE, f"<kbd>{node.get_text()}</kbd>", INLINE)


@register("mark")
def handle_mark(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    return Fragment(INLINE, "<mark>", converter.process_children(node, context), "</mark>", INLINE)


@register("sub")
def handle_subscript(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    return Fragment("<sub>", converter.process_children(node, context), "</sub>")


@register("sup")
def handle_superscript(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    if "footnote-ref" in _class_attr(node):
        return Fragment(f"[^{node.get_text().strip().strip('[]')}]")
    return Fragment("<sup>", converter.process_children(node, context), "</sup>")


@register("svg")
def handle_svg(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    if "display:none" in _compact_style(node):
        return Fragment()

    # Typora and friends only render foreignObject HTML with an explicit namespace.
    for foreign in node.find_all(["foreignObject", "foreignobject"]):
        for div in foreign.find_all("div"):
            div["xmlns"] = XHTML_NS

    markup = str(node)
    if context.save_images_locally:
        path = converter.asset_sink.localize_svg(markup, context.asset_dir_name, context.asset_file_prefix)
        return Fragment(BLOCK, f"![]({path})", BLOCK)
    if node.find("style") is not None:
        return Fragment(BLOCK, f"![](data:image/svg+xml;base64,{svg_to_base64(markup)})", BLOCK)
    return Fragment(BLOCK, f'<div align="center">{markup}</div>', BLOCK)


def convert_footnotes(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    entries = []
    for index, item in enumerate(node.find_all("li"), start=1):
        text = finalize(converter.dispatch(item, context)).replace("\n", " ")
        for glyph in FOOTNOTE_RETURN_GLYPHS:
            text = text.replace(glyph, "")
        entries.append(f"[^{index}]: {text.strip()}")
    if not entries:
        return Fragment()
    return Fragment(BLOCK, "\n".join(entries), BLOCK)


@register("section")
def handle_section(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    if "footnotes" in _class_attr(node):
        return convert_footnotes(converter, node, context)
    return converter.process_children(node, context)


@register("input")
def handle_input(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    if (node.get("type") or "").lower() != "checkbox":
        return Fragment()
    return Fragment("[x] " if node.has_attr("checked") else "[ ] ")


@register("dl")
def handle_definition_list(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    return Fragment(BLOCK, shrink_html(str(node)), BLOCK)


@register("abbr")
def handle_abbreviation(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    return Fragment(shrink_html(str(node)))


@register("center")
def handle_center(converter: "NodeDispatcher", node: Tag, context: ConversionContext) -> Fragment:
    if _single_text_child(node):
        text = node.get_text().strip().replace("\n", "<br>", 1)
        return Fragment(BLOCK, f"<center>{text}</center>", BLOCK)
    mark_images_centered(node)
    return converter.process_children(node, context) + BLOCK


__all__ = [
    "TAG_HANDLERS",
    "TagHandler",
    "convert_katex",
    "detect_code_language",
    "extract_katex_source",
    "handle_default",
    "reconstruct_code_text",
    "register",
]
