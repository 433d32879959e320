"""
Rule Set Persistence.

The rule set is a pair of term lists persisted as JSON:
    {"badwords": [...], "whitelist": [...]}

Readers always get an immutable snapshot; replace() swaps the whole set
at once, so no reader ever sees a half-updated list.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Dict, Any, Iterable
from loguru import logger


@dataclass(frozen=True)
class RuleSet:
    """Immutable snapshot of the blocklist and whitelist."""
    badwords: Tuple[str, ...] = ()
    whitelist: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RuleSet:
        if not isinstance(data, dict):
            raise ValueError("Rule file must contain a JSON object")
        return cls(
            badwords=_clean_terms(data.get("badwords", [])),
            whitelist=_clean_terms(data.get("whitelist", [])),
        )

    def to_dict(self) -> Dict[str, list]:
        return {"badwords": list(self.badwords), "whitelist": list(self.whitelist)}


DEFAULT_RULES = RuleSet(
    badwords=("욕설", "비방", "혐오"),
    whitelist=("게임", "채팅", "가드"),
)


def _clean_terms(terms: Iterable[Any]) -> Tuple[str, ...]:
    if isinstance(terms, str):
        raise ValueError("Rule terms must be a list of strings")
    cleaned = []
    for term in terms:
        term = str(term).strip()
        if term and term not in cleaned:
            cleaned.append(term)
    return tuple(cleaned)


class RuleStore:
    """
    Process-wide rule set, loaded once and replaceable at runtime.

    Injected into every Classifier instead of living in a module global.
    """

    def __init__(self, path: Optional[Path] = None, rules: Optional[RuleSet] = None):
        """
        Args:
            path: JSON file backing the store (None keeps rules in memory only)
            rules: Initial rules (before load() is called)
        """
        self.path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._rules = rules or RuleSet()

    def load(self) -> RuleSet:
        """
        Load rules from disk.

        A missing file is created with the default rules. A corrupt file
        falls back to an empty rule set and is left untouched.
        """
        if self.path is None:
            return self.snapshot()

        if not self.path.exists():
            logger.info(f"No rule file at {self.path}, writing defaults")
            self.replace(DEFAULT_RULES)
            return DEFAULT_RULES

        try:
            with open(self.path, encoding="utf-8") as f:
                rules = RuleSet.from_dict(json.load(f))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load rules from {self.path}: {e}")
            rules = RuleSet()

        with self._lock:
            self._rules = rules
        logger.info(
            f"Loaded {len(rules.badwords)} blocked and {len(rules.whitelist)} whitelisted terms"
        )
        return rules

    def snapshot(self) -> RuleSet:
        """Current rules. The returned object never changes."""
        with self._lock:
            return self._rules

    def replace(self, rules: RuleSet, persist: bool = True):
        """
        Swap in a new rule set, persisting it first when backed by a file.

        Raises:
            OSError: If the rule file cannot be written
        """
        if persist and self.path is not None:
            self._write(rules)
        with self._lock:
            self._rules = rules

    def _write(self, rules: RuleSet):
        # Write atomically by writing to temp then renaming
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(rules.to_dict(), f, ensure_ascii=False, indent=2)
            temp_path.replace(self.path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise
