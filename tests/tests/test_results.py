"""
Test Result Repository
Append, filter and delete attempts by (year, subject) exam key.
"""
from unittest.mock import MagicMock

import pytest

from conftest import make_draft
from exam_portal.errors import StoreUnavailable
from exam_portal.schemas import ExamKey
from exam_portal.services.results import ResultRepository, utc_timestamp


def test_append_stamps_id_and_timestamp(result_repo, store):
    result = result_repo.append(make_draft(answers=[("a", "a"), ("c", "b")]))

    assert result.id == "r1"
    assert result.timestamp == "2024-05-01T10:00:00.000Z"
    document = store.get("exam_results", "r1")
    assert document["userName"] == "Alice"
    assert document["examYear"] == 2024
    assert document["details"]["1"]["selected"] == "c"


def test_get_round_trips_details(result_repo):
    saved = result_repo.append(make_draft(answers=[("a", "a"), ("c", "b")]))

    loaded = result_repo.get(saved.id)

    assert loaded == saved
    assert loaded.details[1].is_correct is False


def test_list_all_is_newest_first(result_repo, seeded_results):
    assert [r.user_name for r in result_repo.list_all()] == ["Carol", "Bob", "Alice"]


def test_list_all_is_empty_when_store_is_down():
    store = MagicMock()
    store.find.side_effect = StoreUnavailable("down")

    assert ResultRepository(store).list_all() == []


def test_list_by_exam_keys(result_repo, seeded_results):
    math_2024 = ExamKey(year=2024, subject="Mathematics")

    assert [r.user_name for r in result_repo.list_by_exam_keys([math_2024])] == ["Carol", "Alice"]
    assert len(result_repo.list_by_exam_keys([])) == 3


def test_list_by_user(result_repo, seeded_results):
    assert [r.exam_year for r in result_repo.list_by_user("Bob")] == [2023]


def test_delete_by_exam_keys_only_touches_matching_results(result_repo, seeded_results):
    deleted = result_repo.delete_by_exam_keys([ExamKey(year=2024, subject="Mathematics")])

    assert deleted == 2
    remaining = result_repo.list_all()
    assert [(r.exam_year, r.subject) for r in remaining] == [(2023, "Mathematics")]


def test_delete_requires_exact_subject(result_repo, seeded_results):
    assert result_repo.delete_by_exam_keys([ExamKey(year=2024, subject="Math")]) == 0
    assert result_repo.count_all() == 3


def test_delete_propagates_store_failure():
    store = MagicMock()
    store.delete_many.side_effect = StoreUnavailable("down")

    with pytest.raises(StoreUnavailable):
        ResultRepository(store).delete_by_exam_keys([ExamKey(year=2024, subject="Mathematics")])


def test_unique_exam_keys(result_repo, seeded_results):
    keys = result_repo.unique_exam_keys()

    assert [k.key for k in keys] == ["2024-Mathematics", "2023-Mathematics"]


def test_exam_key_parse_keeps_hyphenated_subject():
    key = ExamKey.parse("2024-Computer-Science")

    assert key == ExamKey(year=2024, subject="Computer-Science")
    assert ExamKey.parse(key.key) == key


@pytest.mark.parametrize("raw", ["Mathematics", "20x4-Math", "2024-", ""])
def test_exam_key_parse_rejects_malformed(raw):
    with pytest.raises(ValueError):
        ExamKey.parse(raw)


def test_utc_timestamp_format():
    stamp = utc_timestamp()

    assert stamp.endswith("Z")
    assert len(stamp) == len("2024-05-01T10:00:00.000Z")
