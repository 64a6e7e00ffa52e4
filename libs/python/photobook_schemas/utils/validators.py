"""Reusable validation helpers."""

from __future__ import annotations

from typing import Iterable


class PageNumberError(ValueError):
    """Raised when a page set contains duplicate or invalid page numbers."""


def ensure_unique_page_numbers(page_numbers: Iterable[int]) -> list[int]:
    """Validate that every page number in a set is positive and unique.

    Args:
        page_numbers: Page numbers in the order they were produced.

    Returns:
        The page numbers as a list when validation succeeds.

    Raises:
        PageNumberError: If a number repeats or is lower than 1.
    """

    seen: set[int] = set()
    numbers = list(page_numbers)
    for number in numbers:
        if number < 1:
            raise PageNumberError(f"Page numbers start at 1, got {number}")
        if number in seen:
            raise PageNumberError(f"Duplicate page number: {number}")
        seen.add(number)
    return numbers


def sanitise_filename(filename: str, default: str = "photo.jpg") -> str:
    safe_name = filename.strip().replace("/", "-").replace("\\", "-")
    return safe_name or default
