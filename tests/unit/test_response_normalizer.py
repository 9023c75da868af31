import json

from quizloom.application.services.response_normalizer import DEFAULT_EXPLANATION, ResponseNormalizer
from quizloom.infrastructure.oracle.placeholder import PlaceholderOracle


def _question(prompt: str, answer: object = 1, options: list | None = None) -> dict:
    return {
        "question": prompt,
        "options": options if options is not None else ["alpha", "beta", "gamma", "delta"],
        "correctAnswer": answer,
        "explanation": f"Because of {prompt}",
    }


def test_clean_json_is_parsed_as_is() -> None:
    raw = json.dumps({"questions": [_question("First?"), _question("Second?", answer=3)]})
    drafts = ResponseNormalizer().normalize(raw)

    assert [d.prompt for d in drafts] == ["First?", "Second?"]
    assert [d.correct_index for d in drafts] == [1, 3]
    assert drafts[0].explanation == "Because of First?"
    assert all(d.provenance == "ai" for d in drafts)


def test_fenced_json_with_surrounding_prose() -> None:
    raw = "Here are the questions:\n```json\n" + json.dumps({"questions": [_question("Fenced?")]}) + "\n```\nDone."
    drafts = ResponseNormalizer().normalize(raw)

    assert len(drafts) == 1
    assert drafts[0].prompt == "Fenced?"
    assert drafts[0].provenance == "ai"


def test_trailing_commas_are_repaired() -> None:
    raw = '{"questions": [{"question": "Q?", "options": ["a", "b", "c", "d"], "correctAnswer": 1,},]}'
    drafts = ResponseNormalizer().normalize(raw)

    assert len(drafts) == 1
    assert drafts[0].correct_index == 1
    assert drafts[0].provenance == "repaired"
    assert drafts[0].explanation == DEFAULT_EXPLANATION


def test_truncated_response_keeps_complete_and_partial_records() -> None:
    raw = (
        '{"questions": [{"question": "Q1?", "options": ["a", "b", "c", "d"], "correctAnswer": 0},'
        ' {"question": "Q2?", "options": ["a", "b'
    )
    drafts = ResponseNormalizer().normalize(raw)

    assert [d.prompt for d in drafts] == ["Q1?", "Q2?"]
    assert len(drafts[1].options) == 4
    assert all(d.provenance == "repaired" for d in drafts)


def test_embedded_objects_are_salvaged_from_noise() -> None:
    raw = (
        'Sure! {"question": "X?", "options": ["a", "b", "c", "d"], "answer": "b"} and then '
        '{"question": "Y?", "options": ["1", "2", "3", "4"], "answer": 3} trailing junk }'
    )
    drafts = ResponseNormalizer().normalize(raw)

    assert [(d.prompt, d.correct_index) for d in drafts] == [("X?", 1), ("Y?", 3)]
    assert all(d.provenance == "repaired" for d in drafts)


def test_prose_questions_are_rebuilt() -> None:
    raw = """
1. What is the capital of France?
A) Berlin
B) Paris
C) Rome
D) Madrid
Answer: B
Explanation: Paris is the capital.

2. What is 2 + 2?
A) 3
B) 4
C) 5
D) 22
Answer: B) 4
"""
    drafts = ResponseNormalizer().normalize(raw)

    assert len(drafts) == 2
    assert drafts[0].prompt == "What is the capital of France?"
    assert drafts[0].options == ["Berlin", "Paris", "Rome", "Madrid"]
    assert drafts[0].correct_index == 1
    assert drafts[0].explanation == "Paris is the capital."
    assert drafts[1].correct_index == 1
    assert drafts[1].explanation == DEFAULT_EXPLANATION
    assert all(d.provenance == "repaired" for d in drafts)


def test_unusable_output_yields_nothing() -> None:
    normalizer = ResponseNormalizer()
    assert normalizer.normalize(None) == []
    assert normalizer.normalize("") == []
    assert normalizer.normalize("I cannot help with that request.") == []
    assert normalizer.normalize('{"questions": []}') == []
    assert normalizer.normalize('{"questions": [{"question": "Only one option?", "options": ["a"]}]}') == []


def test_correct_flags_on_option_objects() -> None:
    raw = json.dumps(
        [
            {
                "question": "Flagged?",
                "options": [{"text": "a"}, {"text": "b", "isCorrect": True}, {"text": "c"}, {"text": "d"}],
            }
        ]
    )
    drafts = ResponseNormalizer().normalize(raw)

    assert drafts[0].options == ["a", "b", "c", "d"]
    assert drafts[0].correct_index == 1
    assert drafts[0].provenance == "ai"


def test_letter_prefixes_are_stripped_and_text_answers_resolved() -> None:
    raw = json.dumps(
        {"questions": [_question("Prefixed?", answer="Paris", options=["A) Berlin", "B) Paris", "C) Rome", "D) Oslo"])]}
    )
    drafts = ResponseNormalizer().normalize(raw)

    assert drafts[0].options == ["Berlin", "Paris", "Rome", "Oslo"]
    assert drafts[0].correct_index == 1


def test_out_of_range_answer_is_clamped_and_marked_repaired() -> None:
    raw = json.dumps({"questions": [_question("Out of range?", answer=7)]})
    drafts = ResponseNormalizer().normalize(raw)

    assert drafts[0].correct_index == 0
    assert drafts[0].provenance == "repaired"


def test_option_count_is_forced_into_four_to_five() -> None:
    raw = json.dumps(
        {
            "questions": [
                _question("Too few?", answer=1, options=["yes", "no"]),
                _question("Too many?", answer=5, options=["1", "2", "3", "4", "5", "6"]),
                _question("Five?", answer=4, options=["1", "2", "3", "4", "5"]),
            ]
        }
    )
    drafts = ResponseNormalizer().normalize(raw)

    assert drafts[0].options[:2] == ["yes", "no"]
    assert len(drafts[0].options) == 4
    assert drafts[0].correct_index == 1
    assert drafts[0].provenance == "repaired"

    assert len(drafts[1].options) == 5
    assert drafts[1].correct_index == 0
    assert drafts[1].provenance == "repaired"

    assert len(drafts[2].options) == 5
    assert drafts[2].correct_index == 4
    assert drafts[2].provenance == "ai"


def test_every_record_satisfies_shape_invariants() -> None:
    raw = json.dumps(
        {
            "questions": [
                _question("A?", answer="c"),
                _question("B?", answer=None, options=["x", "y", "z"]),
                _question("C?", answer="-1"),
                {"question": "", "options": ["a", "b", "c", "d"]},
                "not an object",
            ]
        }
    )
    drafts = ResponseNormalizer().normalize(raw)

    assert len(drafts) == 3
    for draft in drafts:
        assert draft.prompt
        assert draft.explanation
        assert 4 <= len(draft.options) <= 5
        assert 0 <= draft.correct_index < len(draft.options)


def test_placeholder_output_is_tagged() -> None:
    oracle = PlaceholderOracle()
    short = ResponseNormalizer().normalize(oracle.generate("short text", "instructions"))
    long = ResponseNormalizer().normalize(oracle.generate("x" * 1500, "instructions"))

    assert len(short) == 3
    assert len(long) == 4
    assert all(d.provenance == "placeholder" for d in short + long)
    assert oracle.calls == 2


def test_numeric_answer_matches_numeric_option_text_first() -> None:
    raw = json.dumps(
        {
            "questions": [
                _question("What is 1 + 1?", answer="2", options=["1", "2", "3", "4"]),
                _question("Which index?", answer="3"),
            ]
        }
    )
    drafts = ResponseNormalizer().normalize(raw)

    assert drafts[0].options == ["1", "2", "3", "4"]
    assert drafts[0].correct_index == 1
    assert drafts[1].correct_index == 3
