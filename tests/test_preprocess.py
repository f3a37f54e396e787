import pytest

from callbrain.preprocess import normalize, preprocess, strip_fillers


class TestNormalize:
    def test_canonical_spellings(self):
        assert normalize("my a/c is broken") == "my AC is broken"
        assert normalize("need hvac service asap") == "need HVAC service ASAP"

    def test_typos_fixed(self):
        assert normalize("the furnance and thermastat") == "the furnace and thermostat"
        assert normalize("can you come tommorow") == "can you come tomorrow"

    def test_whitespace_collapsed_and_trimmed(self):
        assert normalize("   my   AC \t is  out  ") == "my AC is out"

    def test_punctuation_spacing(self):
        assert normalize("hello ,my AC died !") == "hello, my AC died!"

    def test_correction_then_sentence_break(self):
        assert normalize("call me tomorrow.im home") == "call me tomorrow. I'm home"
        assert normalize("my ac died.hvac guy came") == "my AC died. HVAC guy came"

    def test_punctuation_fix_completes_correction(self):
        assert normalize("the a.c . is out") == "the AC is out"

    def test_word_boundary_safe(self):
        # "ac" inside a word is not an abbreviation
        assert normalize("my account balance") == "my account balance"
        assert normalize("the back porch") == "the back porch"

    def test_longest_match_wins(self):
        assert normalize("no cooling upstairs") == "not cooling upstairs"

    def test_empty(self):
        assert normalize("") == ""
        assert normalize(None) == ""

    @pytest.mark.parametrize("text", [
        "my a/c is broken",
        "  hvac   asap!!  ",
        "hello ,my AC died !",
        "the furnance . It stopped",
        "im not sure,dont know",
        "a.c. unit no cool",
        "Um, like, my heatpump is out.",
        "call me tomorrow.im home",
        "my ac died.hvac guy came",
        "the a.c . is out",
        "tommorow.dont call before 9",
    ])
    def test_idempotent(self, text):
        once = normalize(text)
        assert normalize(once) == once


class TestStripFillers:
    def test_removes_disfluencies(self):
        assert strip_fillers("um my AC uh stopped working") == "my AC stopped working"

    def test_removes_comma_delimited_like(self):
        assert strip_fillers("it's, like, totally broken") == "it's totally broken"

    def test_leading_marker(self):
        assert strip_fillers("Like, my AC died") == "my AC died"

    def test_keeps_content_like(self):
        assert strip_fillers("I'd like to book a visit") == "I'd like to book a visit"
        assert strip_fillers("it looks like water") == "it looks like water"

    def test_keeps_words_containing_fillers(self):
        assert strip_fillers("the umbrella is under the hummingbird feeder") == (
            "the umbrella is under the hummingbird feeder"
        )

    def test_uh_huh_left_alone(self):
        assert "uh-huh" in strip_fillers("uh-huh that's right")


class TestPreprocess:
    def test_records_changes(self):
        result = preprocess("um my a/c stopped")
        assert result.raw == "um my a/c stopped"
        assert result.normalized == "um my AC stopped"
        assert result.cleaned == "my AC stopped"
        assert "a/c->AC" in result.corrections
        assert "um" in result.fillers_removed

    def test_all_filler_utterance_keeps_something(self):
        result = preprocess("um, uh")
        assert result.cleaned
