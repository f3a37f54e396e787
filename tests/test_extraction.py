import pytest

from callbrain.extraction import categorize_duration, extract_slots, extract_time_preference


class TestExtractSlots:
    def test_phone(self):
        slots = extract_slots("you can reach me at 512-555-0101")
        assert slots["contact"]["phone"] == "+15125550101"

    def test_name(self):
        slots = extract_slots("Hi, my name is Jane Doe and my AC is out")
        assert slots["contact"]["name"] == "Jane Doe"

    def test_name_prefix_case_insensitive(self):
        assert extract_slots("My name is Sam")["contact"]["name"] == "Sam"

    def test_address_and_zip(self):
        slots = extract_slots("I'm at 4521 Oak Hollow Drive, 78745")
        assert slots["location"]["address_line1"] == "4521 Oak Hollow Drive"
        assert slots["location"]["zip"] == "78745"

    def test_house_number_is_not_zip(self):
        slots = extract_slots("it's 12345 Main Street")
        assert slots["location"]["address_line1"] == "12345 Main Street"
        assert "zip" not in slots["location"]

    def test_phone_digits_are_not_zip(self):
        slots = extract_slots("call me back at 512 555 0101")
        assert "location" not in slots

    def test_spoken_zip(self):
        slots = extract_slots("zip code is seven eight seven zero one")
        assert slots["location"]["zip"] == "78701"

    def test_urgent_time(self):
        assert extract_slots("can you come out today")["scheduling"]["preferred_window"] == "soonest available"

    def test_day_and_window(self):
        slots = extract_slots("tomorrow morning works")
        assert slots["scheduling"] == {"preferred_date": "tomorrow", "preferred_window": "morning"}

    def test_access_notes(self):
        slots = extract_slots("gate code is 4455 and watch out for the dog")
        assert slots["access"] == {"gate_code": "4455", "notes": "pet on property"}

    def test_duration(self):
        slots = extract_slots("it's been blowing warm air for about three days")
        assert slots["problem"]["duration"] == "for about three days"
        assert slots["problem"]["duration_category"] == "recent"

    def test_nothing_to_extract(self):
        assert extract_slots("my AC is making a weird noise") == {}
        assert extract_slots("") == {}


class TestTimePreference:
    def test_routine(self):
        assert extract_time_preference("whenever is fine, no rush") == {"preferred_window": "flexible"}

    def test_none(self):
        assert extract_time_preference("my furnace is loud") == {}


class TestCategorizeDuration:
    @pytest.mark.parametrize("duration,expected", [
        ("since this morning", "acute"),
        ("a couple hours", "acute"),
        ("since yesterday", "recent"),
        ("for about three days", "recent"),
        ("two weeks", "ongoing"),
        ("for 10 days", "ongoing"),
        ("since monday", "recent"),
        ("", ""),
        ("a bit", ""),
    ])
    def test_categories(self, duration, expected):
        assert categorize_duration(duration) == expected
