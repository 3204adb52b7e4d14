"""Markdown fragments with structural break tokens, and their final assembly.

Handlers never emit magic strings for layout. A fragment is a sequence of text
pieces and ``FragmentToken`` values; ``finalize`` resolves the tokens into
blank lines and spaces in a single pass once the whole document is built.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Iterator, List, Tuple, Union


class FragmentToken(Enum):
    BLOCK_BREAK = "block"
    INLINE_BREAK = "inline"


BLOCK = FragmentToken.BLOCK_BREAK
INLINE = FragmentToken.INLINE_BREAK

Piece = Union[str, FragmentToken]
FragmentLike = Union["Fragment", str, FragmentToken]


class Fragment:
    __slots__ = ("_pieces",)

    def __init__(self, *pieces: FragmentLike) -> None:
        self._pieces: Tuple[Piece, ...] = _normalize(pieces)

    @classmethod
    def join(cls, parts: Iterable[FragmentLike]) -> "Fragment":
        return cls(*parts)

    @property
    def pieces(self) -> Tuple[Piece, ...]:
        return self._pieces

    def __iter__(self) -> Iterator[Piece]:
        return iter(self._pieces)

    def __add__(self, other: FragmentLike) -> "Fragment":
        return Fragment(self, other)

    def __radd__(self, other: FragmentLike) -> "Fragment":
        return Fragment(other, self)

    def __bool__(self) -> bool:
        return bool(self._pieces)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Fragment):
            return self._pieces == other._pieces
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._pieces)

    def __repr__(self) -> str:
        return f"Fragment{self._pieces!r}"

    def plain_text(self) -> str:
        return "".join(piece for piece in self._pieces if isinstance(piece, str))

    def has_text(self) -> bool:
        return bool(self.plain_text().strip())

    def strip(self) -> "Fragment":
        return self._strip_edges({BLOCK, INLINE})

    def strip_inline(self) -> "Fragment":
        return self._strip_edges({INLINE})

    def _strip_edges(self, tokens: set) -> "Fragment":
        pieces = list(self._pieces)
        while pieces:
            head = pieces[0]
            if isinstance(head, FragmentToken):
                if head not in tokens:
                    break
                pieces.pop(0)
                continue
            stripped = head.lstrip()
            if stripped:
                pieces[0] = stripped
                break
            pieces.pop(0)
        while pieces:
            tail = pieces[-1]
            if isinstance(tail, FragmentToken):
                if tail not in tokens:
                    break
                pieces.pop()
                continue
            stripped = tail.rstrip()
            if stripped:
                pieces[-1] = stripped
                break
            pieces.pop()
        return Fragment(*pieces)

    def lines(self) -> List["Fragment"]:
        lines: List[List[Piece]] = [[]]
        for piece in self._pieces:
            if isinstance(piece, FragmentToken):
                lines[-1].append(piece)
                continue
            first, *rest = piece.split("\n")
            lines[-1].append(first)
            for part in rest:
                lines.append([part])
        return [Fragment(*line) for line in lines]

    def resolve_blocks(self, replacement: str = "\n\n") -> "Fragment":
        """Turn every run of block breaks and the real newlines touching it into ``replacement``.

        Inline breaks next to a block break are dropped; the others are kept for
        the final assembly.
        """
        out: List[Piece] = []
        pending_block = False
        for piece in self._pieces:
            if piece is BLOCK:
                pending_block = True
                while out:
                    tail = out[-1]
                    if isinstance(tail, FragmentToken):
                        out.pop()
                        continue
                    trimmed = tail.rstrip("\n")
                    if trimmed:
                        out[-1] = trimmed
                        break
                    out.pop()
                continue
            if piece is INLINE:
                if not pending_block:
                    out.append(piece)
                continue
            if pending_block:
                piece = piece.lstrip("\n")
                if not piece:
                    continue
                out.append(replacement)
                pending_block = False
            out.append(piece)
        if pending_block:
            out.append(replacement)
        return Fragment(*out)


def _normalize(parts: Iterable[FragmentLike]) -> Tuple[Piece, ...]:
    out: List[Piece] = []
    for part in parts:
        if isinstance(part, Fragment):
            items: Iterable[Piece] = part.pieces
        elif isinstance(part, (str, FragmentToken)):
            items = (part,)
        elif part is None:
            continue
        else:
            raise TypeError(f"Cannot build a fragment from {type(part).__name__}")
        for item in items:
            if isinstance(item, str):
                if not item:
                    continue
                if out and isinstance(out[-1], str):
                    out[-1] = out[-1] + item
                    continue
            out.append(item)
    return tuple(out)


def finalize(raw: FragmentLike) -> str:
    """Resolve all break tokens and return the trimmed Markdown text."""
    fragment = raw if isinstance(raw, Fragment) else Fragment(raw)
    resolved = fragment.resolve_blocks("\n\n")

    chunks: List[str] = []
    last_char = ""
    pending_space = False
    for piece in resolved:
        if piece is INLINE:
            pending_space = True
            continue
        if piece is BLOCK:
            continue
        if pending_space:
            # Whitespace on either side already separates the words.
            if last_char and not last_char.isspace() and not piece[0].isspace():
                chunks.append(" ")
            pending_space = False
        chunks.append(piece)
        last_char = piece[-1]
    return "".join(chunks).strip()


__all__ = ["BLOCK", "INLINE", "Fragment", "FragmentToken", "finalize"]
