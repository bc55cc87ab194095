import pytest

from lensocr.aggregator import ResultAggregator
from lensocr.cancellation import CancellationToken
from lensocr.exceptions import RunCancelled
from lensocr.utils import percent

from conftest import make_result

SEP = "\n\n---\n\n"


def test_results_are_kept_in_page_order():
    agg = ResultAggregator(total_pages=4, separator=SEP)
    for n in (3, 1, 4, 2):
        assert agg.add(make_result(n))
    assert [p.page_number for p in agg.pages] == [1, 2, 3, 4]
    assert agg.is_complete


def test_full_text_joins_in_page_order():
    agg = ResultAggregator(total_pages=3, separator=SEP)
    agg.add(make_result(3, "C"))
    agg.add(make_result(1, "A"))
    agg.add(make_result(2, "B"))
    assert agg.full_text() == "A" + SEP + "B" + SEP + "C"


def test_duplicate_page_is_rejected():
    agg = ResultAggregator(total_pages=2)
    agg.add(make_result(1))
    with pytest.raises(ValueError):
        agg.add(make_result(1))


def test_page_outside_document_is_rejected():
    agg = ResultAggregator(total_pages=2)
    with pytest.raises(ValueError):
        agg.add(make_result(3))


def test_closed_aggregator_drops_late_results():
    agg = ResultAggregator(total_pages=2)
    agg.add(make_result(1))
    agg.close()
    assert agg.add(make_result(2)) is False
    assert [p.page_number for p in agg.pages] == [1]
    assert agg.closed


def test_progress_tracks_completed_pages():
    agg = ResultAggregator(total_pages=8)
    assert agg.progress == 0
    agg.add(make_result(5))
    assert agg.progress == 13
    for n in (1, 2, 3, 4, 6, 7):
        agg.add(make_result(n))
    assert agg.progress == 88
    agg.add(make_result(8))
    assert agg.progress == 100


@pytest.mark.parametrize(
    "done,total,expected",
    [(0, 3, 0), (1, 3, 33), (2, 3, 67), (1, 8, 13), (199, 200, 99), (200, 200, 100), (0, 0, 100)],
)
def test_percent_rounds_half_up_and_reserves_100(done, total, expected):
    assert percent(done, total) == expected


def test_cancellation_token_is_write_once():
    token = CancellationToken()
    assert not token.is_signaled()
    token.raise_if_signaled()

    token.signal()
    token.signal()
    assert token.is_signaled()
    with pytest.raises(RunCancelled):
        token.raise_if_signaled()


def test_fresh_token_per_run_is_unsignaled():
    first = CancellationToken()
    first.signal()
    assert not CancellationToken().is_signaled()
