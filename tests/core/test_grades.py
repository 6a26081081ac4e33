import pytest

from termfees.shared.utils.grades import extract_grade_number, grades_match, normalize_grade_key


class TestExtractGradeNumber:
    @pytest.mark.parametrize(
        "label,expected",
        [
            ("5", "5"),
            ("5-A", "5"),
            ("5 - Section B", "5"),
            ("Grade 5", "5"),
            ("GRADE 05", "5"),
            ("grade: 7", "7"),
            ("Grade 10 - East", "10"),
            ("Class 7-B", "7"),
        ],
    )
    def test_numeric_labels(self, label, expected):
        assert extract_grade_number(label) == expected

    @pytest.mark.parametrize("label", ["PP1", "Play Group", "", None, "   "])
    def test_labels_without_grade_number(self, label):
        assert extract_grade_number(label) is None


class TestNormalizeGradeKey:
    def test_numeric_key(self):
        assert normalize_grade_key("Grade 5") == "5"
        assert normalize_grade_key("5 - Section B") == "5"

    def test_falls_back_to_cleaned_label(self):
        assert normalize_grade_key("  Play   Group ") == "play group"
        assert normalize_grade_key("PP1") == "pp1"

    def test_empty(self):
        assert normalize_grade_key(None) == ""


class TestGradesMatch:
    def test_same_grade_written_differently(self):
        assert grades_match("5", "Grade 5")
        assert grades_match("5-A", "5 - Section B")

    def test_case_insensitive_labels(self):
        assert grades_match("pp1", "PP1")

    def test_different_grades(self):
        assert not grades_match("5", "6")
        assert not grades_match("PP1", "PP2")
        assert not grades_match(None, "5")
