"""Translation of editor (line, character) positions into string offsets.

Without a codec, characters count Unicode scalar values, which is exactly
what indexing a Python ``str`` does. With the pygls ``PositionCodec``
negotiated for the session, characters count the client's code units
(UTF-16 unless the editor asked otherwise). Edits are applied one after
another, each against the text produced by the previous one.
"""
from typing import Iterable, Optional
from dataclasses import dataclass

from pygls.workspace import PositionCodec

@dataclass(frozen=True)
class Position:
    line: int
    character: int

@dataclass(frozen=True)
class TextEdit:
    """A content change; ``start``/``end`` are None for a full replacement"""
    text: str
    start: Optional[Position] = None
    end: Optional[Position] = None

    @property
    def is_full(self) -> bool:
        return self.start is None or self.end is None

def line_start(text: str, line: int) -> int:
    """Offset just after the ``line``-th newline, or the end of the text"""
    offset = 0
    for _ in range(line):
        newline = text.find("\n", offset)
        if newline == -1:
            return len(text)
        offset = newline + 1
    return offset

def position_to_offset(text: str, position: Position,
                       codec: Optional[PositionCodec] = None) -> int:
    """Offset of a position.

    An offset beyond the end of the document clamps to the last scalar;
    the end itself stays addressable so text can be appended.
    """
    offset = line_start(text, position.line)
    if codec is None:
        offset += position.character
    else:
        units = 0
        while units < position.character and offset < len(text):
            units += codec.client_num_units(text[offset])
            offset += 1
        offset += max(position.character - units, 0)
    if offset > len(text):
        return max(len(text) - 1, 0)
    return offset

def apply_edit(text: str, edit: TextEdit, codec: Optional[PositionCodec] = None) -> str:
    if edit.is_full:
        return edit.text
    start = position_to_offset(text, edit.start, codec)
    end = position_to_offset(text, edit.end, codec)
    if end < start:
        start, end = end, start
    return text[:start] + edit.text + text[end:]

def apply_edits(text: str, edits: Iterable[TextEdit],
                codec: Optional[PositionCodec] = None) -> str:
    for edit in edits:
        text = apply_edit(text, edit, codec)
    return text
