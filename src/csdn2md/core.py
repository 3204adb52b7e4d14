"""Core pipeline for csdn2md."""

from __future__ import annotations

import copy
import json
import logging
import re
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .assets import AssetSink, Fetcher
from .dispatch import NodeDispatcher
from .fragment import finalize
from .models import ArticleOptions, ConversionContext, build_context, split_options
from .text import clean_url, collapse_spaces, safe_filename

LOG = logging.getLogger("csdn2md")

EXIT_INVALID_ARGS = 6
EXIT_OUTPUT_DIR = 7
EXIT_CONVERSION = 8

DEFAULT_PARSER = "html.parser"
DEFAULT_TITLE = "未命名文章"
SHARED_ASSET_DIR = "assets"
MERGE_SEPARATOR = "\n\n\n\n"
TITLE_SELECTOR = "#articleContentId"
INFO_SELECTOR = ".bar-content"
BODY_SELECTOR = "#content_views"
INFO_BOX_SELECTOR = ".article-info-box"
PUBLISH_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}")

FETCH_RETRIES = 3
FETCH_TIMEOUT = 15.0
CSDN_REFERER = "https://blog.csdn.net/"
USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) csdn2md"


class Csdn2MdError(RuntimeError):
    pass


class ArticleNotFoundError(Csdn2MdError):
    pass


def _resolve_log_level(verbose: bool, debug: bool) -> int:
    return logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)


def _configure_csdn2md_logger(level: int) -> None:
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        handler.setLevel(level)
        LOG.addHandler(handler)
    else:
        for handler in LOG.handlers:
            handler.setLevel(level)
            if handler.formatter is None:
                handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))


def setup_logging(verbose: bool, debug: bool) -> None:
    level = _resolve_log_level(verbose, debug)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    _configure_csdn2md_logger(level)


def safe_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="\n")


def load_options_file(path: Path) -> Tuple[Dict[str, bool], Dict[str, bool]]:
    """Read a JSON object of option flags, split into context and article values."""
    try:
        data_raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise ValueError(f"Unable to read options file {path}: {exc}") from exc
    if not isinstance(data_raw, dict):
        raise ValueError(f"Options file {path} must contain a JSON object")
    return split_options(data_raw)


def parse_html(raw: str, parser: str = DEFAULT_PARSER):
    try:
        from bs4 import BeautifulSoup  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"beautifulsoup4 not available: {exc}") from exc
    return BeautifulSoup(raw, parser)


class ConversionSession:
    """Converts one or more documents, sharing a single asset sink between them."""

    def __init__(self, asset_sink: Optional[AssetSink] = None) -> None:
        self.asset_sink = asset_sink if asset_sink is not None else AssetSink()
        self.dispatcher = NodeDispatcher(self.asset_sink)

    def convert(self, root, context: Optional[ConversionContext] = None) -> str:
        context = context or ConversionContext()
        # Handlers rewrite attributes and prune nodes; keep the caller's tree intact.
        working = copy.copy(root)
        markdown = finalize(self.dispatcher.process_children(working, context))
        return f"{markdown}\n\n" if markdown else ""

    def convert_html(
        self,
        html: str,
        context: Optional[ConversionContext] = None,
        parser: str = DEFAULT_PARSER,
    ) -> str:
        return self.convert(parse_html(html, parser), context)


@dataclass
class Article:
    title: str
    body: Any
    info: str = ""
    url: str = ""
    date: str = ""
    categories: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)


def extract_article(html: str, url: str = "", parser: str = DEFAULT_PARSER) -> Article:
    soup = parse_html(html, parser)

    title_tag = soup.select_one(TITLE_SELECTOR)
    title = title_tag.get_text().strip() if title_tag is not None else ""
    info_tag = soup.select_one(INFO_SELECTOR)
    info = collapse_spaces(info_tag.get_text()) if info_tag is not None else ""

    body = soup.select_one(BODY_SELECTOR)
    if body is None:
        if soup.body is None:
            raise ArticleNotFoundError("Article content container not found")
        LOG.warning("No %s container, converting the whole <body>", BODY_SELECTOR)
        body = soup.body

    if not url:
        canonical = soup.select_one('link[rel="canonical"]')
        url = (canonical.get("href") or "") if canonical is not None else ""
    article = Article(title=title or DEFAULT_TITLE, body=body, info=info, url=clean_url(url))

    info_box = soup.select_one(INFO_BOX_SELECTOR)
    if info_box is not None:
        time_tag = info_box.select_one(".time")
        match = PUBLISH_DATE_RE.search(time_tag.get_text()) if time_tag is not None else None
        article.date = match.group(0) if match else ""

        box_text = info_box.get_text()
        links = [tag.get_text().strip() for tag in info_box.select(".tag-link")]
        if links and "分类专栏" in box_text:
            article.categories.append(links.pop(0))
        if links and "文章标签" in box_text:
            article.tags.extend(links)
    return article


def serial_prefix(index: int, total: int) -> str:
    return f"{str(index).zfill(len(str(total)))}_"


def uses_shared_assets(options: ArticleOptions) -> bool:
    return options.merge or options.save_all_images_to_assets


def asset_dir_for(article: Article, options: ArticleOptions, prefix: str = "") -> str:
    if uses_shared_assets(options):
        return SHARED_ASSET_DIR
    title = safe_filename(article.title)
    return f"{prefix}{title}" if options.add_serial_number else title


def article_filename(article: Article, options: ArticleOptions, prefix: str = "") -> str:
    title = safe_filename(article.title)
    return f"{prefix}{title}.md" if options.add_serial_number else f"{title}.md"


def context_for_article(
    article: Article,
    options: ArticleOptions,
    prefix: str = "",
    base: Optional[ConversionContext] = None,
) -> ConversionContext:
    base = base or ConversionContext()
    return build_context(
        base,
        asset_dir_name=asset_dir_for(article, options, prefix),
        asset_file_prefix=prefix if uses_shared_assets(options) else "",
        # A merged document has no single place for a [TOC] marker.
        enable_toc=base.enable_toc and not options.merge,
    )


def _yaml_front_matter(article: Article, title: str) -> str:
    lines = ["---", f"title: {title}", f"date: {article.date}"]
    if article.categories:
        lines.append("categories:")
        lines.extend(f"- {category}" for category in article.categories)
    if article.tags:
        lines.append("tags:")
        lines.extend(f"- {tag}" for tag in article.tags)
    lines.append("---")
    return "\n".join(lines) + "\n\n"


def render_article(
    article: Article,
    options: Optional[ArticleOptions] = None,
    sink: Optional[AssetSink] = None,
    url: str = "",
    prefix: str = "",
    base_context: Optional[ConversionContext] = None,
) -> str:
    options = options or ArticleOptions()
    session = ConversionSession(sink)
    context = context_for_article(article, options, prefix, base_context)
    LOG.debug("Rendering '%s' (assets in %s)", article.title, context.asset_dir_name)
    markdown = session.convert(article.body, context)

    display_title = f"{prefix}{article.title}" if options.add_serial_number_to_title else article.title
    if options.add_info_blockquote:
        link = clean_url(url) or article.url
        markdown = f"> {article.info}\n> 文章链接：{link}\n\n{markdown}"
    if options.add_title:
        markdown = f"# {display_title}\n\n{markdown}"
    if options.add_yaml_front_matter:
        markdown = _yaml_front_matter(article, display_title) + markdown
    return markdown


def merge_documents(docs: Iterable[Tuple[int, str]]) -> str:
    ordered = sorted(docs, key=lambda item: item[0])
    return MERGE_SEPARATOR.join(text for _, text in ordered)


def fetch_url(url: str, retries: int = FETCH_RETRIES, timeout: float = FETCH_TIMEOUT) -> bytes:
    if url.startswith("//"):
        url = f"https:{url}"
    last_error: Optional[Exception] = None
    for attempt in range(1, retries + 1):
        request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT, "Referer": CSDN_REFERER})
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:
                return response.read()
        except (urllib.error.URLError, TimeoutError) as exc:
            last_error = exc
            LOG.warning("Fetch attempt %d/%d failed for %s: %s", attempt, retries, url, exc)
    raise Csdn2MdError(f"Unable to fetch {url} after {retries} attempts: {last_error}")


def run_conversion_pipeline(
    *,
    inputs: List[Path],
    out_dir: Path,
    options: ArticleOptions,
    base_context: ConversionContext,
    fetcher: Optional[Fetcher] = None,
    merge_name: str = "merged",
    verbose: bool = False,
) -> List[Path]:
    if not out_dir.exists():
        out_dir.mkdir(parents=True, exist_ok=False)

    sink = AssetSink(fetcher)
    total = len(inputs)
    written: List[Path] = []
    merged: List[Tuple[int, str]] = []

    for index, path in enumerate(inputs, start=1):
        prefix = serial_prefix(index, total) if total > 1 else ""
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise Csdn2MdError(f"Unable to read {path}: {exc}") from exc
        article = extract_article(raw)
        markdown = render_article(article, options, sink, prefix=prefix, base_context=base_context)
        if verbose:
            LOG.info("[%d/%d] Converted %s -> '%s'", index, total, path.name, article.title)

        if options.merge:
            merged.append((index, markdown.strip()))
            continue
        md_out = out_dir / article_filename(article, options, prefix)
        safe_write_text(md_out, markdown.strip() + "\n")
        written.append(md_out)

    if options.merge:
        md_out = out_dir / f"{safe_filename(merge_name)}.md"
        safe_write_text(md_out, merge_documents(merged) + "\n")
        written.append(md_out)

    assets = sink.write_to(out_dir)
    if verbose:
        LOG.info("Wrote %d Markdown file(s) and %d asset(s) to %s", len(written), len(assets), out_dir)
    return written


__all__ = [
    "Article",
    "ArticleNotFoundError",
    "ConversionSession",
    "Csdn2MdError",
    "article_filename",
    "asset_dir_for",
    "context_for_article",
    "extract_article",
    "fetch_url",
    "load_options_file",
    "merge_documents",
    "parse_html",
    "render_article",
    "run_conversion_pipeline",
    "safe_write_text",
    "serial_prefix",
    "setup_logging",
]
