"""Document chunking."""

from typing import Optional

from .base import BaseChunker
from .document import Chunk, Document


class RecursiveChunker(BaseChunker):
    """Split text on the coarsest separator that keeps pieces under chunk_size.

    Adjacent chunks share up to ``overlap`` trailing characters of the
    previous chunk, so a sentence cut at a boundary is still seen whole once.
    """

    DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", " ", ""]

    def __init__(self, chunk_size: int = 1000, overlap: int = 200, separators: Optional[list[str]] = None):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("Overlap must be non-negative and less than chunk_size")
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.separators = separators or self.DEFAULT_SEPARATORS

    def chunk(self, document: Document) -> list[Chunk]:
        pieces = self.split_text(document.content)
        chunks = []
        search_from = 0
        for index, piece in enumerate(pieces):
            start = document.content.find(piece, search_from)
            if start < 0:
                start = search_from
            else:
                search_from = start + 1
            chunks.append(Chunk(
                id=f"{document.id}_chunk_{index}",
                document_id=document.id,
                content=piece,
                metadata={**document.metadata, "chunk_index": index, "chunker": "recursive"},
                start_index=start,
                end_index=start + len(piece),
            ))
        return chunks

    def split_text(self, text: str) -> list[str]:
        """Split text into overlapping pieces of at most chunk_size characters."""
        if not text or not text.strip():
            return []
        pieces = self._split(text, self.separators)
        return self._merge(pieces)

    def _split(self, text: str, separators: list[str]) -> list[str]:
        """Break text into atoms no longer than chunk_size."""
        if len(text) <= self.chunk_size:
            return [text]
        separator = next((sep for sep in separators if sep and sep in text), None)
        if separator is None:
            return [text[i:i + self.chunk_size] for i in range(0, len(text), self.chunk_size)]

        remaining = separators[separators.index(separator) + 1:]
        splits = text.split(separator)
        atoms = []
        for i, split in enumerate(splits):
            piece = split + separator if i < len(splits) - 1 else split
            if not piece:
                continue
            if len(piece) <= self.chunk_size:
                atoms.append(piece)
            else:
                atoms.extend(self._split(piece, remaining))
        return atoms

    def _merge(self, atoms: list[str]) -> list[str]:
        """Greedily pack atoms into chunks, seeding each with the previous tail."""
        chunks: list[str] = []
        current = ""
        for atom in atoms:
            if current and len(current) + len(atom) > self.chunk_size:
                chunks.append(current.strip())
                current = self._tail(current, self.chunk_size - len(atom))
            current += atom
        if current.strip():
            chunks.append(current.strip())
        return [c for c in chunks if c]

    def _tail(self, text: str, room: int) -> str:
        """Last ``overlap`` characters of text, starting at a word boundary."""
        size = min(self.overlap, max(room, 0))
        if size <= 0:
            return ""
        tail = text[-size:]
        space = tail.find(" ")
        return tail[space + 1:] if 0 <= space < len(tail) - 1 else tail
