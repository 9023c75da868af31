import pytest

from quizloom.application.services.chunk_planner import ChunkPlanner
from quizloom.core.errors import PlanningError


def _exam_text(question_count: int) -> str:
    blocks = []
    for i in range(1, question_count + 1):
        blocks.append(
            f"{i}. Which statement about topic {i} is correct?\n"
            "A) alpha option\nB) beta option\nC) gamma option\nD) delta option\n"
        )
    return "\n".join(blocks)


def _assert_contiguous(text: str, units) -> None:
    assert units[0].start_offset == 0
    assert units[-1].end_offset == len(text)
    for prev, nxt in zip(units, units[1:]):
        assert prev.end_offset == nxt.start_offset
    assert "".join(u.content for u in units) == text
    assert [u.ordinal for u in units] == list(range(1, len(units) + 1))
    assert [u.is_first for u in units] == [True] + [False] * (len(units) - 1)


def test_small_low_density_document_is_a_single_unit() -> None:
    text = _exam_text(5)
    units = ChunkPlanner().plan(text)

    assert len(units) == 1
    assert units[0].content == text
    assert units[0].is_first
    _assert_contiguous(text, units)


def test_dense_document_is_split_by_question_estimate() -> None:
    text = _exam_text(60)
    planner = ChunkPlanner()

    assert planner.estimate_density(text).estimate == 60
    units = planner.plan(text)

    assert len(units) == 3
    _assert_contiguous(text, units)
    # Splits fall on word boundaries.
    for unit in units[1:]:
        assert not unit.content[0].isspace()
        assert text[unit.start_offset - 1].isspace()


def test_unit_count_is_capped_at_max_units() -> None:
    text = _exam_text(300)
    units = ChunkPlanner(max_units=5).plan(text)

    assert len(units) == 5
    _assert_contiguous(text, units)


def test_large_sparse_document_gets_minimum_split() -> None:
    text = ("lorem ipsum dolor sit amet " * 1200).strip()
    assert len(text) >= 25_000

    units = ChunkPlanner().plan(text)

    assert len(units) == 2
    _assert_contiguous(text, units)


def test_estimate_is_clamped_to_minimum() -> None:
    estimate = ChunkPlanner().estimate_density("No questions in here at all.")
    assert estimate.estimate == 10
    assert estimate.numbered_lines == 0


def test_question_markers_count_towards_density() -> None:
    text = "\n".join(f"Question {i}: describe step {i}." for i in range(1, 41))
    assert ChunkPlanner().estimate_density(text).question_markers == 40


@pytest.mark.parametrize("content", ["", "   \n\t  "])
def test_empty_text_is_rejected(content: str) -> None:
    with pytest.raises(PlanningError):
        ChunkPlanner().plan(content)


def test_page_images_become_one_unit_per_page() -> None:
    pages = [b"\x89PNG page one", b"\x89PNG page two", b"\x89PNG page three"]
    units = ChunkPlanner().plan(pages)

    assert [u.ordinal for u in units] == [1, 2, 3]
    assert all(u.is_image for u in units)
    assert units[0].is_first and not units[1].is_first
    assert units[2].content == pages[2]


def test_empty_page_sequence_or_page_is_rejected() -> None:
    planner = ChunkPlanner()
    with pytest.raises(PlanningError):
        planner.plan([])
    with pytest.raises(PlanningError):
        planner.plan([b"page", b""])
