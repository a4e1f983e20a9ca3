"""Two-level page-table dictionary mapping strings to 32-bit codes.

A code packs the page id in its high 16 bits and the page-local id in its low
16 bits. The page is chosen by hashing the string, the local id is assigned in
insertion order within the page. Codes are opaque: they are neither monotonic
nor stable across encoder instances.
"""

from __future__ import annotations

import zlib
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from ..errors import DictionaryOverflowError

PAGE_COUNT = 1 << 16
PAGE_CAPACITY = 1 << 16
MAX_CODE = 0xFFFFFFFF


class Page:
    """Bidirectional string <-> local id mapping."""

    def __init__(self) -> None:
        self._entries: Dict[str, int] = {}
        self._reverse: List[str] = []

    def get_or_insert(self, key: str) -> int:
        local_id = self._entries.get(key)
        if local_id is not None:
            return local_id
        local_id = len(self._reverse)
        if local_id >= PAGE_CAPACITY:
            raise DictionaryOverflowError(
                f"Page is full ({PAGE_CAPACITY} entries); cannot insert {key!r}"
            )
        self._entries[key] = local_id
        self._reverse.append(key)
        return local_id

    def get(self, key: str) -> Optional[int]:
        return self._entries.get(key)

    def get_string(self, local_id: int) -> Optional[str]:
        if 0 <= local_id < len(self._reverse):
            return self._reverse[local_id]
        return None

    def __len__(self) -> int:
        return len(self._reverse)

    def __iter__(self) -> Iterator[Tuple[int, str]]:
        return iter(enumerate(self._reverse))


class PageTable:
    """Lazily created pages addressed by a hash of the key."""

    def __init__(self) -> None:
        self._pages: Dict[int, Page] = {}

    @staticmethod
    def calc_page_id(key: str) -> int:
        return zlib.crc32(key.encode("utf-8")) % PAGE_COUNT

    def insert(self, key: str) -> int:
        page_id = self.calc_page_id(key)
        page = self._pages.get(page_id)
        if page is None:
            page = Page()
            self._pages[page_id] = page
        local_id = page.get_or_insert(key)
        return (page_id << 16) | local_id

    def lookup(self, code: int) -> Optional[str]:
        if not 0 <= code <= MAX_CODE:
            return None
        page = self._pages.get(code >> 16)
        if page is None:
            return None
        return page.get_string(code & 0xFFFF)

    def entries(self) -> Iterator[Tuple[int, str]]:
        for page_id, page in self._pages.items():
            for local_id, value in page:
                yield (page_id << 16) | local_id, value

    @property
    def page_count(self) -> int:
        return len(self._pages)

    def __len__(self) -> int:
        return sum(len(page) for page in self._pages.values())


class Encoder:
    """Encoding session over one :class:`PageTable` (e.g. one workspace)."""

    def __init__(self) -> None:
        self.page_table = PageTable()

    def encode(self, value: str) -> int:
        return self.page_table.insert(value)

    def decode(self, code: int) -> Optional[str]:
        return self.page_table.lookup(code)

    def entries(self) -> Iterator[Tuple[int, str]]:
        return self.page_table.entries()

    def __len__(self) -> int:
        return len(self.page_table)

    @classmethod
    def from_entries(cls, entries: Iterable[Tuple[int, str]]) -> "Encoder":
        """Rebuild an encoder from persisted ``(code, value)`` pairs.

        Pairs are replayed in local-id order so every value gets its original
        code back.
        """

        encoder = cls()
        for code, value in sorted(entries, key=lambda item: item[0] & 0xFFFF):
            restored = encoder.encode(value)
            if restored != code:
                raise ValueError(
                    f"Dictionary entry {value!r} restored as {restored:#010x}, expected {code:#010x}"
                )
        return encoder


class StackCompressor:
    """Encode whole stacks of method names through a shared encoder."""

    def __init__(self, encoder: Encoder) -> None:
        self.encoder = encoder

    def compress_stack(self, stack: Sequence[str]) -> List[int]:
        return [self.encoder.encode(name) for name in stack]

    def decompress_stack(self, codes: Sequence[int]) -> List[Optional[str]]:
        return [self.encoder.decode(code) for code in codes]
