"""Tests for batch folder naming."""

from datetime import datetime

from photo_batcher.organization.naming import generate_batch_folder_name

NOW = datetime(2024, 3, 7, 12, 0, 0)


class TestGenerateBatchFolderName:
    """Test folder name generation."""

    def test_default_pattern(self):
        """Test that no pattern gives Batch_001."""
        assert generate_batch_folder_name(None, 0, 5, NOW) == "Batch_001"
        assert generate_batch_folder_name("", 4, 5, NOW) == "Batch_005"

    def test_documented_examples(self):
        """Test the reference examples."""
        assert generate_batch_folder_name(None, 0, 5, NOW) == "Batch_001"
        assert generate_batch_folder_name("Set_{count}", 9, 10, NOW) == "Set_010"
        assert generate_batch_folder_name("Batch", 999, 1000, NOW) == "Batch_1000"

    def test_count_appended_when_missing(self):
        """Test that a pattern without {count} gets one appended."""
        assert generate_batch_folder_name("Trip", 1, 3, NOW) == "Trip_002"

    def test_date_and_count(self):
        """Test date variables together with the counter."""
        name = generate_batch_folder_name("Trip_{date}_{count}", 0, 12, NOW)

        assert name == "Trip_2024-03-07_001"

    def test_year_and_month(self):
        """Test the year and month variables."""
        name = generate_batch_folder_name("{year}-{month}/{count}", 2, 3, NOW)

        assert name == "2024-03/003"

    def test_padding_grows_with_batch_count(self):
        """Test that padding widens past 999 batches."""
        assert generate_batch_folder_name(None, 0, 999, NOW) == "Batch_001"
        assert generate_batch_folder_name(None, 0, 1000, NOW) == "Batch_0001"
        assert generate_batch_folder_name(None, 1233, 1234, NOW) == "Batch_1234"

    def test_case_insensitive_variables(self):
        """Test that variables match regardless of case."""
        name = generate_batch_folder_name("Set_{COUNT}_{Year}", 0, 1, NOW)

        assert name == "Set_001_2024"

    def test_unknown_variables_left_alone(self):
        """Test that unknown braces survive untouched."""
        assert generate_batch_folder_name("{foo}_{count}", 0, 1, NOW) == "{foo}_001"

    def test_names_are_unique(self):
        """Test that every batch of a run gets a distinct name."""
        names = {generate_batch_folder_name("Trip", i, 250, NOW) for i in range(250)}

        assert len(names) == 250
