from __future__ import annotations

from datetime import date
from enum import Enum


class Weekday(str, Enum):
    MONDAY = 'monday'
    TUESDAY = 'tuesday'
    WEDNESDAY = 'wednesday'
    THURSDAY = 'thursday'
    FRIDAY = 'friday'
    SATURDAY = 'saturday'
    SUNDAY = 'sunday'

    @property
    def number(self) -> int:
        """Monday=0 ... Sunday=6, same numbering as ``date.weekday()``."""
        return _ORDER.index(self)

    @classmethod
    def of(cls, value: date) -> 'Weekday':
        return _ORDER[value.weekday()]

    @classmethod
    def parse(cls, value: 'Weekday | str | int') -> 'Weekday':
        if isinstance(value, Weekday):
            return value
        if isinstance(value, int):
            if 0 <= value <= 6:
                return _ORDER[value]
            raise ValueError(f'weekday index out of range: {value}')
        clean = str(value or '').strip().lower()
        for member in _ORDER:
            if clean in (member.value, member.value[:3]):
                return member
        raise ValueError(f'unknown weekday: {value!r}')


_ORDER = (
    Weekday.MONDAY,
    Weekday.TUESDAY,
    Weekday.WEDNESDAY,
    Weekday.THURSDAY,
    Weekday.FRIDAY,
    Weekday.SATURDAY,
    Weekday.SUNDAY,
)
