from __future__ import annotations

from dataclasses import dataclass

from .types import AccountAuthorization, PartSpec

MAX_PART_COUNT = 10000
MAX_SMALL_FILE_SIZE = 5 * 1000 * 1000 * 1000


@dataclass(frozen=True, slots=True)
class PartSizes:
    minimum_part_size: int
    recommended_part_size: int

    @classmethod
    def from_authorization(cls, auth: AccountAuthorization) -> PartSizes:
        return cls(
            minimum_part_size=auth.absolute_minimum_part_size,
            recommended_part_size=auth.recommended_part_size,
        )

    def must_be_large_file(self, content_length: int) -> bool:
        return content_length > MAX_SMALL_FILE_SIZE

    def is_big_enough_to_be_large_file(self, content_length: int) -> bool:
        # Two parts at least: the first of minimum size, the second non-empty.
        return content_length > self.minimum_part_size

    def should_treat_as_large_file(self, content_length: int) -> bool:
        return content_length >= 2 * self.recommended_part_size

    def pick_parts(self, content_length: int) -> list[PartSpec]:
        """Split ``content_length`` bytes into contiguous, 1-based parts.

        Every part but the last is the same size; the last absorbs the
        remainder.  Never more than MAX_PART_COUNT parts.
        """
        if not self.is_big_enough_to_be_large_file(content_length):
            raise ValueError(
                f"content_length={content_length} is too small to make at least two parts, "
                f"minimum_part_size={self.minimum_part_size}"
            )

        if content_length < 2 * self.minimum_part_size:
            part_count = 2
            part_size = self.minimum_part_size
        elif content_length < 2 * self.recommended_part_size:
            part_count = 2
            part_size = (content_length + 1) // 2
        else:
            part_count = min(MAX_PART_COUNT, content_length // self.recommended_part_size)
            part_size = content_length // part_count
        last_part_size = content_length - part_size * (part_count - 1)

        specs = []
        start = 0
        for part_number in range(1, part_count + 1):
            length = part_size if part_number < part_count else last_part_size
            specs.append(PartSpec(part_number=part_number, start=start, length=length))
            start += length
        return specs


__all__ = ["PartSizes", "MAX_PART_COUNT", "MAX_SMALL_FILE_SIZE"]
