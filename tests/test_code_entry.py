"""
Unit tests for the six-slot code entry buffer.

Tests:
- Typing and auto-advance
- Backspace behaviour
- Arrow navigation
- Whole-code paste
- Canonical code string
"""

import pytest

from otpverify.core.code_entry import CodeEntryBuffer


class TestTyping:
    """Test single digit input"""

    def test_digit_advances_focus(self):
        buffer = CodeEntryBuffer()
        assert buffer.set_digit(0, "4") is True
        assert buffer.digits[0] == "4"
        assert buffer.focus_index == 1

    def test_last_slot_keeps_focus(self):
        buffer = CodeEntryBuffer()
        buffer.set_digit(5, "9")
        assert buffer.focus_index == 5

    @pytest.mark.parametrize("value", ["a", "12", " ", "-", "٣"])
    def test_non_digit_rejected(self, value):
        """Letters, multi-character input and non-ASCII digits are ignored"""
        buffer = CodeEntryBuffer()
        assert buffer.set_digit(2, value) is False
        assert buffer.digits == ("", "", "", "", "", "")
        assert buffer.focus_index == 0

    def test_empty_value_clears_slot(self):
        buffer = CodeEntryBuffer()
        buffer.set_digit(3, "7")
        buffer.set_digit(3, "")
        assert buffer.digits[3] == ""
        assert buffer.focus_index == 3

    def test_index_out_of_range(self):
        buffer = CodeEntryBuffer()
        with pytest.raises(IndexError):
            buffer.set_digit(6, "1")


class TestBackspace:
    """Test contiguous-delete behaviour"""

    def test_clears_filled_slot_in_place(self):
        buffer = CodeEntryBuffer()
        buffer.set_digit(2, "5")
        buffer.handle_backspace(2)
        assert buffer.digits[2] == ""
        assert buffer.focus_index == 2

    def test_empty_slot_clears_previous(self):
        buffer = CodeEntryBuffer()
        buffer.set_digit(0, "1")
        buffer.set_digit(1, "2")
        buffer.handle_backspace(2)
        assert buffer.digits[:3] == ("1", "", "")
        assert buffer.focus_index == 1

    def test_first_slot_empty_is_noop(self):
        buffer = CodeEntryBuffer()
        buffer.handle_backspace(0)
        assert buffer.focus_index == 0
        assert buffer.digits == ("",) * 6


class TestArrows:
    """Test left/right focus movement"""

    def test_moves_within_bounds(self):
        buffer = CodeEntryBuffer()
        buffer.move_right(2)
        assert buffer.focus_index == 3
        buffer.move_left(3)
        assert buffer.focus_index == 2

    def test_clamped_at_edges(self):
        buffer = CodeEntryBuffer()
        buffer.move_left(0)
        assert buffer.focus_index == 0
        buffer.move_right(5)
        assert buffer.focus_index == 5


class TestPaste:
    """Test whole-code paste"""

    @pytest.mark.parametrize("code", ["123456", "000000", "908172"])
    def test_valid_paste_fills_all_slots(self, code):
        buffer = CodeEntryBuffer()
        assert buffer.handle_paste(code) is True
        assert buffer.to_code_string() == code
        assert buffer.focus_index == 5

    def test_surrounding_whitespace_ignored(self):
        buffer = CodeEntryBuffer()
        assert buffer.handle_paste("  654321\n") is True
        assert buffer.to_code_string() == "654321"

    @pytest.mark.parametrize("text", ["12345", "1234567", "12a456", "", "123 456", "１２３４５６"])
    def test_invalid_paste_leaves_buffer_unchanged(self, text):
        buffer = CodeEntryBuffer()
        buffer.set_digit(0, "9")
        before = buffer.digits
        focus_before = buffer.focus_index

        assert buffer.handle_paste(text) is False
        assert buffer.digits == before
        assert buffer.focus_index == focus_before


class TestCodeString:
    """Test the canonical code string"""

    def test_partial_code_is_not_submittable(self):
        buffer = CodeEntryBuffer()
        for index, digit in enumerate("12345"):
            buffer.set_digit(index, digit)
        assert buffer.is_complete is False
        assert buffer.to_code_string() is None

    def test_complete_code(self):
        buffer = CodeEntryBuffer()
        for index, digit in enumerate("314159"):
            buffer.set_digit(index, digit)
        assert buffer.to_code_string() == "314159"

    def test_clear_resets_focus(self):
        buffer = CodeEntryBuffer()
        buffer.handle_paste("111111")
        buffer.clear()
        assert buffer.to_code_string() is None
        assert buffer.focus_index == 0
