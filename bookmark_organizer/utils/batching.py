from typing import List, Sequence, TypeVar

T = TypeVar('T')

DEFAULT_BATCH_SIZE = 50


def split(items: Sequence[T], batch_size: int = DEFAULT_BATCH_SIZE) -> List[List[T]]:
    """Split items into consecutive batches of batch_size, the last one possibly shorter."""
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    items = list(items)
    return [items[i:i + batch_size] for i in range(0, len(items), batch_size)]
