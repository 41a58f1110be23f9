"""
Six-slot passcode entry buffer.

Models the row of single-digit inputs: typing, backspace, arrow navigation and
whole-code paste, plus the focused slot. The canonical code string exists only
when every slot is filled.
"""

import re
from typing import List, Optional, Tuple

from otpverify.core.config import settings

# ASCII digits only, \d would also accept other Unicode digits
_DIGIT_RE = re.compile(r"^[0-9]$")


class CodeEntryBuffer:
    """Fixed-size array of digit slots with a focus cursor"""

    def __init__(self, length: Optional[int] = None):
        self.length = length or settings.OTP_LENGTH
        self._paste_re = re.compile(rf"^[0-9]{{{self.length}}}$")
        self._digits: List[str] = [""] * self.length
        self.focus_index = 0

    @property
    def digits(self) -> Tuple[str, ...]:
        return tuple(self._digits)

    @property
    def is_complete(self) -> bool:
        return all(self._digits)

    def _check_index(self, index: int) -> None:
        if not 0 <= index < self.length:
            raise IndexError(f"Slot index {index} out of range 0..{self.length - 1}")

    def set_digit(self, index: int, value: str) -> bool:
        """
        Put a single digit into a slot and advance focus.

        An empty value clears the slot without moving focus. Anything that is
        not a single ASCII digit is rejected.

        Returns:
            True if the input was accepted
        """
        self._check_index(index)
        if value and not _DIGIT_RE.match(value):
            return False

        self._digits[index] = value
        if value and index < self.length - 1:
            self.focus_index = index + 1
        else:
            self.focus_index = index
        return True

    def handle_backspace(self, index: int) -> None:
        """Clear the slot, or the previous one if this slot is already empty"""
        self._check_index(index)
        if self._digits[index]:
            self._digits[index] = ""
            self.focus_index = index
        elif index > 0:
            self._digits[index - 1] = ""
            self.focus_index = index - 1
        else:
            self.focus_index = 0

    def move_left(self, index: int) -> None:
        self._check_index(index)
        self.focus_index = max(0, index - 1)

    def move_right(self, index: int) -> None:
        self._check_index(index)
        self.focus_index = min(self.length - 1, index + 1)

    def handle_paste(self, text: str) -> bool:
        """
        Fill every slot from a pasted code.

        Only a paste of exactly `length` digits (surrounding whitespace
        ignored) is accepted; anything else leaves the buffer untouched.
        """
        candidate = (text or "").strip()
        if not self._paste_re.match(candidate):
            return False
        self._digits = list(candidate)
        self.focus_index = self.length - 1
        return True

    def clear(self) -> None:
        self._digits = [""] * self.length
        self.focus_index = 0

    def to_code_string(self) -> Optional[str]:
        """The full code, or None when any slot is empty (not submittable)"""
        if not self.is_complete:
            return None
        return "".join(self._digits)
