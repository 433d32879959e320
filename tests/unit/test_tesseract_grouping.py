from __future__ import annotations

from typing import Any, Dict, List

import pytest

from chatguard.core.contracts import BoundingBox
from chatguard.recognition.tesseract_ocr import group_words_into_lines


def _data(words: List[Dict[str, Any]]) -> Dict[str, List[Any]]:
    keys = ("text", "conf", "left", "top", "width", "height", "block_num", "par_num", "line_num")
    return {key: [word[key] for word in words] for key in keys}


def _word(text: str, left: int, top: int, line: int, conf: float = 90, width: int = 30, height: int = 12) -> Dict[str, Any]:
    return {
        "text": text,
        "conf": conf,
        "left": left,
        "top": top,
        "width": width,
        "height": height,
        "block_num": 1,
        "par_num": 1,
        "line_num": line,
    }


def test_words_are_grouped_by_line_with_union_boxes() -> None:
    data = _data([
        _word("금칙어", 0, 2, line=1),
        _word("테스트", 40, 0, line=1, height=16),
        _word("hello", 0, 30, line=2),
    ])
    lines = group_words_into_lines(data)

    assert [line.text for line in lines] == ["금칙어 테스트", "hello"]
    assert lines[0].bbox == BoundingBox(0, 0, 70, 16)
    assert lines[0].confidence == pytest.approx(0.9)


def test_blank_and_non_word_entries_are_skipped() -> None:
    data = _data([
        _word("", 0, 0, line=1, conf=-1),
        _word("  ", 0, 0, line=1),
        _word("ok", 5, 5, line=1),
        _word("junk", 50, 5, line=1, conf=-1),
    ])
    lines = group_words_into_lines(data)
    assert [line.text for line in lines] == ["ok"]


def test_min_confidence_filters_words() -> None:
    data = _data([_word("sure", 0, 0, line=1, conf=95), _word("maybe", 40, 0, line=1, conf=20)])
    lines = group_words_into_lines(data, min_confidence=0.5)
    assert [line.text for line in lines] == ["sure"]


def test_empty_result_gives_no_lines() -> None:
    assert group_words_into_lines({"text": []}) == []
