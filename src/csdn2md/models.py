"""Configuration values threaded through a conversion."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class ConversionContext:
    asset_dir_name: str = ""
    asset_file_prefix: str = ""
    enable_toc: bool = True
    save_images_locally: bool = False
    force_image_centering: bool = False
    preserve_image_dimensions: bool = False
    preserve_colored_text: bool = False
    strip_search_engine_links: bool = True
    list_nesting_depth: int = 0

    def descend(self) -> "ConversionContext":
        return replace(self, list_nesting_depth=self.list_nesting_depth + 1)


@dataclass
class ArticleOptions:
    add_title: bool = True
    add_serial_number: bool = True
    add_serial_number_to_title: bool = False
    add_info_blockquote: bool = True
    add_yaml_front_matter: bool = False
    save_all_images_to_assets: bool = True
    merge: bool = False


CONTEXT_KEYS: Tuple[str, ...] = tuple(
    f.name for f in fields(ConversionContext) if f.name not in {"asset_dir_name", "asset_file_prefix", "list_nesting_depth"}
)
ARTICLE_KEYS: Tuple[str, ...] = tuple(f.name for f in fields(ArticleOptions))


def split_options(data: Mapping[str, Any]) -> Tuple[Dict[str, bool], Dict[str, bool]]:
    unknown = sorted(set(data) - set(CONTEXT_KEYS) - set(ARTICLE_KEYS))
    if unknown:
        raise ValueError(f"Unknown option(s): {', '.join(unknown)}")
    context_values: Dict[str, bool] = {}
    article_values: Dict[str, bool] = {}
    for key, value in data.items():
        if not isinstance(value, bool):
            raise ValueError(f"Option {key} must be true or false, got {value!r}")
        if key in CONTEXT_KEYS:
            context_values[key] = value
        else:
            article_values[key] = value
    return context_values, article_values


def build_context(
    base: Optional[ConversionContext] = None,
    **overrides: Any,
) -> ConversionContext:
    return replace(base or ConversionContext(), **overrides)
