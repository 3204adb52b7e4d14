"""Command-line interface for csdn2md."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .version import __version__

# CLI flag -> (option name, value it sets).
FLAG_OPTIONS = {
    "disable_toc": ("enable_toc", False),
    "save_images": ("save_images_locally", True),
    "force_image_centering": ("force_image_centering", True),
    "preserve_image_size": ("preserve_image_dimensions", True),
    "preserve_colored_text": ("preserve_colored_text", True),
    "keep_search_links": ("strip_search_engine_links", False),
    "no_title": ("add_title", False),
    "no_serial_number": ("add_serial_number", False),
    "serial_number_in_title": ("add_serial_number_to_title", True),
    "no_info_blockquote": ("add_info_blockquote", False),
    "yaml_front_matter": ("add_yaml_front_matter", True),
    "per_article_assets": ("save_all_images_to_assets", False),
    "merge": ("merge", True),
}


def _get_usage() -> str:
    return (
        f"csdn2md {__version__}\n"
        "Usage:\n"
        "  csdn2md [--help] [--version|--ver]\n"
        "  csdn2md --input FILE [FILE ...] --to-dir TO_DIR [options]\n\n"
        "Options:\n"
        "  --options PATH               Load option flags from a JSON object\n"
        "  --merge                      Merge all articles into one Markdown file\n"
        "  --merge-name NAME            File name (without .md) of the merged document\n"
        "  --save-images                Download images into local asset files\n"
        "  --fetch-images               Alias of --save-images\n"
        "  --per-article-assets         Store assets in one directory per article instead of assets/\n"
        "  --disable-toc                Drop [TOC] markers\n"
        "  --force-image-centering      Center every image\n"
        "  --preserve-image-size        Keep width/height as raw <img> tags\n"
        "  --preserve-colored-text      Keep colored <span> text\n"
        "  --keep-search-links          Keep CSDN search-engine links\n"
        "  --no-title                   Do not add the article title as H1\n"
        "  --no-serial-number           Do not prefix batch file names with a serial number\n"
        "  --serial-number-in-title     Also prefix the H1 title with the serial number\n"
        "  --no-info-blockquote         Do not add the article info blockquote\n"
        "  --yaml-front-matter          Add a YAML front matter block\n"
        "  --verbose                    Verbose progress logs\n"
        "  --debug                      Debug logs"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("--input", nargs="+", help="Saved CSDN article page(s)")
    parser.add_argument("--to-dir", help="Output directory")
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs")
    parser.add_argument("--options", help="Path to a JSON object of option flags")
    parser.add_argument("--merge-name", default="merged", help="Merged document name (default: merged)")
    parser.add_argument(
        "--fetch-images",
        action="store_true",
        help="Alias of --save-images",
    )
    for flag in FLAG_OPTIONS:
        parser.add_argument(f"--{flag.replace('_', '-')}", dest=flag, action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        print(_get_usage())
        return 2

    if not argv or args.help:
        print(_get_usage())
        return 0

    if args.version or args.ver:
        print(__version__)
        return 0

    if not args.input or not args.to_dir:
        print(_get_usage())
        print("Options --input and --to-dir are required", file=sys.stderr)
        return 6

    try:
        from csdn2md import core
        from csdn2md.models import ARTICLE_KEYS, ArticleOptions, build_context
    except Exception as exc:
        print(f"Unable to import csdn2md core: {exc}", file=sys.stderr)
        return 6

    core.setup_logging(args.verbose, args.debug)

    context_values: dict = {}
    article_values: dict = {}
    if args.options:
        options_path = Path(args.options).expanduser().resolve()
        if not options_path.exists() or not options_path.is_file():
            print(f"Options file not found: {options_path}", file=sys.stderr)
            return core.EXIT_INVALID_ARGS
        try:
            context_values, article_values = core.load_options_file(options_path)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return core.EXIT_INVALID_ARGS

    for flag, (name, value) in FLAG_OPTIONS.items():
        if not getattr(args, flag):
            continue
        if name in ARTICLE_KEYS:
            article_values[name] = value
        else:
            context_values[name] = value
    if args.fetch_images:
        context_values["save_images_locally"] = True
    base_context = build_context(**context_values)

    inputs = [Path(item).expanduser().resolve() for item in args.input]
    for path in inputs:
        if not path.exists() or not path.is_file():
            print(f"Input file not found: {path}", file=sys.stderr)
            return core.EXIT_INVALID_ARGS

    to_dir = Path(args.to_dir).expanduser().resolve()
    if to_dir.exists() and not to_dir.is_dir():
        print(f"Output path is not a directory: {to_dir}", file=sys.stderr)
        return core.EXIT_OUTPUT_DIR

    try:
        core.run_conversion_pipeline(
            inputs=inputs,
            out_dir=to_dir,
            options=ArticleOptions(**article_values),
            base_context=base_context,
            fetcher=core.fetch_url if base_context.save_images_locally else None,
            merge_name=str(args.merge_name),
            verbose=bool(args.verbose),
        )
    except OSError as exc:
        print(f"Unable to write output to {to_dir}: {exc}", file=sys.stderr)
        return core.EXIT_OUTPUT_DIR
    except (RuntimeError, TypeError, ValueError) as exc:
        print(f"Conversion failed: {exc}", file=sys.stderr)
        return core.EXIT_CONVERSION
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
