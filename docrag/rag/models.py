"""Record types stored in the document and chunk collections."""
import os
import time
import uuid
from typing import List

from pydantic import BaseModel, Field


def new_key() -> str:
    """Generate a time-ordered unique storage key (UUID version 7 layout).

    The top 48 bits hold the Unix time in milliseconds, so keys created later
    sort after earlier ones and neighbouring inserts stay close in the index.
    """
    millis = time.time_ns() // 1_000_000
    value = (millis & ((1 << 48) - 1)) << 80
    value |= int.from_bytes(os.urandom(10), "big")

    # version 7
    value &= ~(0xF << 76)
    value |= 0x7 << 76
    # RFC 4122 variant
    value &= ~(0x3 << 62)
    value |= 0x2 << 62

    return str(uuid.UUID(int=value))


class DocumentRecord(BaseModel):
    """One ingested document, keyed separately from its human-meaningful id."""

    key: str = Field(default_factory=new_key)
    source_id: str
    document_id: str
    version: str


class ChunkRecord(BaseModel):
    """A text segment of a document with its embedding."""

    key: str = Field(default_factory=new_key)
    source_id: str
    document_id: str
    locator: int
    text: str
    embedding: List[float] = Field(default_factory=list)
