from __future__ import annotations

import json

import pytest

from chatguard.classify.rules import DEFAULT_RULES, RuleSet, RuleStore


def test_first_load_writes_defaults(tmp_path) -> None:
    path = tmp_path / "rules.json"
    store = RuleStore(path)

    rules = store.load()
    assert rules == DEFAULT_RULES
    assert json.loads(path.read_text(encoding="utf-8")) == {
        "badwords": ["욕설", "비방", "혐오"],
        "whitelist": ["게임", "채팅", "가드"],
    }


def test_existing_file_is_loaded(tmp_path) -> None:
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"badwords": [" spam ", "spam", ""], "whitelist": []}), encoding="utf-8")

    rules = RuleStore(path).load()
    assert rules.badwords == ("spam",)
    assert rules.whitelist == ()


def test_corrupt_file_falls_back_to_empty_rules(tmp_path) -> None:
    path = tmp_path / "rules.json"
    path.write_text("{not json", encoding="utf-8")

    store = RuleStore(path)
    assert store.load() == RuleSet()
    assert path.read_text(encoding="utf-8") == "{not json"


def test_replace_persists_and_swaps(tmp_path) -> None:
    path = tmp_path / "nested" / "rules.json"
    store = RuleStore(path)
    store.replace(RuleSet(badwords=("a",), whitelist=("b",)))

    assert store.snapshot().badwords == ("a",)
    assert RuleStore(path).load() == RuleSet(badwords=("a",), whitelist=("b",))
    assert not path.with_suffix(".tmp").exists()


def test_rule_set_rejects_non_mapping() -> None:
    with pytest.raises(ValueError):
        RuleSet.from_dict(["badwords"])
