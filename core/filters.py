# core/filters.py
"""Turns the four lookup fields into a parameterized WHERE clause."""
from dataclasses import dataclass
from typing import List, Tuple

LIKE_ESCAPE = "\\"

# Column order is also the order predicates appear in the clause.
FILTER_COLUMNS = (
    ("indexation_id", "indexation_id"),
    ("username", "username"),
    ("user_id", "user_id"),
    ("notes", "notes"),
)


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so user text matches literally."""
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


@dataclass(frozen=True)
class FilterSet:
    indexation_id: str = ""
    username: str = ""
    user_id: str = ""
    notes: str = ""

    @property
    def is_empty(self) -> bool:
        return not any(getattr(self, attr) for attr, _ in FILTER_COLUMNS)

    def active(self) -> List[Tuple[str, str]]:
        """(column, text) pairs for every non-empty field."""
        return [(column, getattr(self, attr)) for attr, column in FILTER_COLUMNS if getattr(self, attr)]

    def to_sql(self) -> Tuple[str, List[str]]:
        """Return ``(where_clause, params)``; the clause is "" when nothing is set."""
        predicates = []
        params: List[str] = []
        for column, text in self.active():
            predicates.append(f"{column} LIKE ? ESCAPE '{LIKE_ESCAPE}'")
            params.append(f"%{escape_like(text)}%")
        if not predicates:
            return "", []
        return "WHERE " + " AND ".join(predicates), params
