"""
Test Pydantic Schemas
Data validation, camelCase documents and store errors.
"""
import json
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError
from pymongo.errors import ServerSelectionTimeoutError

from exam_portal.schemas import Account, Exam, ExamStatus, Option, Question, Role
from exam_portal.errors import StoreUnavailable
from exam_portal.services.store import JsonFlagStore, MemoryDocumentStore, MongoDocumentStore


def make_question(**overrides):
    fields = dict(
        id="q1",
        text="What is 2+2?",
        options=[Option(id="a", text="3"), Option(id="b", text="4")],
        correct_answer="b",
    )
    fields.update(overrides)
    return Question(**fields)


def test_option_valid():
    option = Option(id="a", text="Answer A")
    assert option.id == "a"
    assert option.text == "Answer A"


def test_option_missing_field():
    with pytest.raises(ValidationError):
        Option(id="a")


def test_option_id_outside_a_to_d():
    with pytest.raises(ValidationError):
        Option(id="e", text="Fifth")


def test_question_valid():
    question = make_question()
    assert question.option_text("b") == "4"
    assert question.explanation == ""


def test_question_needs_two_to_four_options():
    with pytest.raises(ValidationError):
        make_question(options=[Option(id="a", text="only")], correct_answer="a")
    with pytest.raises(ValidationError):
        make_question(options=[Option(id=i, text=i) for i in "abcd"] + [Option(id="a", text="again")])


def test_question_correct_answer_must_be_an_option():
    with pytest.raises(ValidationError, match="does not match any option"):
        make_question(correct_answer="c")


def test_exam_document_uses_camel_case():
    exam = Exam(id="e1", year=2024, subject="Math", total_questions=1, questions=[make_question()])
    document = exam.to_document()

    assert document["totalQuestions"] == 1
    assert document["questions"][0]["correctAnswer"] == "b"
    assert document["status"] == "Available"
    assert Exam.model_validate(document) == exam


def test_exam_status_values():
    assert ExamStatus("Archived") is ExamStatus.ARCHIVED


def test_account_role_defaults_to_student():
    assert Account(username="s", password="p").role == Role.STUDENT
    with pytest.raises(ValidationError):
        Account(username="s", password="p", role="guest")


def test_memory_store_filters_and_copies():
    store = MemoryDocumentStore()
    store.put("c", "1", {"kind": "x", "n": 1})
    store.put("c", "2", {"kind": "y", "n": 2})

    found = store.find("c", {"kind": "x"})
    found[0]["n"] = 99

    assert store.get("c", "1")["n"] == 1
    assert store.update("c", "2", {"n": 3}) is True
    assert store.update("c", "3", {"n": 3}) is False
    assert store.delete_many("c", {"kind": "y"}) == 1
    assert store.count("c") == 1


def test_json_flag_store_persists(tmp_path):
    path = tmp_path / "nested" / "flags.json"
    store = JsonFlagStore(path)

    store.set_list("archived_exams", ["2024"])

    assert json.loads(path.read_text()) == {"archived_exams": ["2024"]}
    assert JsonFlagStore(path).get_list("archived_exams") == ["2024"]


def test_json_flag_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "flags.json"
    path.write_text("{not json")

    assert JsonFlagStore(path).get_list("archived_exams") == []


def test_mongo_store_translates_driver_errors():
    client = MagicMock()
    collection = client.__getitem__.return_value.__getitem__.return_value
    collection.find_one.side_effect = ServerSelectionTimeoutError("no servers")
    store = MongoDocumentStore("mongodb://unused", "exam_portal", client=client)

    with pytest.raises(StoreUnavailable):
        store.get("exams", "2024")
    collection.find_one.assert_called_once_with({"_id": "2024"}, {"_id": False})
