import pytest

from bookmark_organizer.utils.batching import split


def test_split_keeps_order_and_sizes():
    items = list(range(7))
    batches = split(items, 3)
    assert batches == [[0, 1, 2], [3, 4, 5], [6]]


@pytest.mark.parametrize("size, batch_size", [(0, 5), (1, 1), (49, 50), (50, 50), (120, 50), (121, 7)])
def test_split_concatenation_reproduces_input(size, batch_size):
    items = [f"entry-{i}" for i in range(size)]
    batches = split(items, batch_size)
    assert [item for batch in batches for item in batch] == items
    assert sum(len(batch) for batch in batches) == size
    assert all(len(batch) == batch_size for batch in batches[:-1])


def test_split_120_entries_in_three_batches():
    assert [len(batch) for batch in split(range(120), 50)] == [50, 50, 20]


@pytest.mark.parametrize("batch_size", [0, -1])
def test_split_rejects_non_positive_size(batch_size):
    with pytest.raises(ValueError):
        split([1, 2], batch_size)
