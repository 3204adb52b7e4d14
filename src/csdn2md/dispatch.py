"""Routes source nodes to their tag handlers."""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

from bs4.element import NavigableString, PageElement, PreformattedString, Tag

from .assets import AssetSink
from .fragment import Fragment
from .handlers import TAG_HANDLERS, TagHandler, handle_default
from .models import ConversionContext

LOG = logging.getLogger("csdn2md")


class NodeDispatcher:
    """Walks a parsed tree, converting each node with the handler for its tag.

    Text nodes become their trimmed text. Comments, doctypes and other
    non-content nodes produce nothing. Tags without a registered handler
    recurse into their children and end with a block break.
    """

    def __init__(
        self,
        asset_sink: Optional[AssetSink] = None,
        handlers: Optional[Mapping[str, TagHandler]] = None,
    ) -> None:
        self.asset_sink = asset_sink if asset_sink is not None else AssetSink()
        self._handlers: Dict[str, TagHandler] = dict(TAG_HANDLERS if handlers is None else handlers)

    def handler_for(self, tag_name: str) -> TagHandler:
        return self._handlers.get(tag_name.lower(), handle_default)

    def dispatch(self, node: PageElement, context: ConversionContext) -> Fragment:
        if isinstance(node, Tag):
            return self.handler_for(node.name or "")(self, node, context)
        if isinstance(node, NavigableString) and not isinstance(node, PreformattedString):
            return Fragment(str(node).strip())
        return Fragment()

    def process_children(self, node: Tag, context: ConversionContext) -> Fragment:
        # Handlers may decompose descendants, so iterate over a snapshot.
        return Fragment.join(self.dispatch(child, context) for child in list(node.children))


__all__ = ["NodeDispatcher"]
