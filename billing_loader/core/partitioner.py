from typing import List, Sequence

from .schemas import Chunk, Record


def effective_workers(record_count: int, workers: int) -> int:
    """Clamp the worker count to the number of records."""
    if workers < 1:
        raise ValueError(f"Worker count must be >= 1, got {workers}")
    return min(workers, record_count)


def partition(records: Sequence[Record], workers: int) -> List[Chunk]:
    """
    Split records into contiguous, non-overlapping chunks, one per worker.

    Every chunk but the last holds ``len(records) // workers`` records; the
    last one takes everything remaining. Concatenating the chunks in order
    gives back the original sequence. An empty sequence yields no chunks.
    """
    total = len(records)
    count = effective_workers(total, workers)
    if count == 0:
        return []

    rows_per_chunk = total // count
    chunks = []
    for index in range(count):
        start = index * rows_per_chunk
        end = total if index == count - 1 else start + rows_per_chunk
        chunks.append(Chunk(index=index, start=start, records=list(records[start:end])))
    return chunks
