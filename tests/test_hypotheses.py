"""
Tests for src/beliefs/hypotheses.py - Immutable hypothesis set operations.
"""

import pytest

from src.beliefs import hypotheses as hyp
from src.beliefs.hypotheses import Hypothesis


@pytest.fixture
def three():
    return (
        Hypothesis("a", "Alpha", 0.2),
        Hypothesis("b", "Beta", 0.3),
        Hypothesis("c", "Gamma", 0.5),
    )


class TestHypothesisRecord:
    """Tests for the Hypothesis dataclass."""

    def test_dict_round_trip(self):
        """Test to_dict / from_dict."""
        h = Hypothesis("h-1", "Rain", 0.4, "#2a6df4")
        assert Hypothesis.from_dict(h.to_dict()) == h

    def test_color_omitted_when_unset(self):
        """Test that a missing color is not serialized."""
        assert "color" not in Hypothesis("h-1", "Rain", 0.4).to_dict()

    def test_default_hypotheses(self):
        """Test the default two-hypothesis set."""
        defaults = hyp.default_hypotheses()
        assert [h.label for h in defaults] == ["H1", "H2"]
        assert hyp.priors_of(defaults) == [0.5, 0.5]
        assert defaults[0].id != defaults[1].id


class TestClamp:
    """Tests for clamp01."""

    @pytest.mark.parametrize("value,expected", [
        (0.5, 0.5),
        (-1, 0.0),
        (3, 1.0),
        (float("nan"), 0.0),
        ("x", 0.0),
    ])
    def test_clamp01(self, value, expected):
        assert hyp.clamp01(value) == expected


class TestEdits:
    """Tests for add/remove/reorder/set_prior/rename."""

    def test_add_assigns_defaults(self, three):
        """Test that add_hypothesis fills in label, color and a new id."""
        added = hyp.add_hypothesis(three)
        assert len(added) == 4
        assert added[-1].label == "H4"
        assert added[-1].color == hyp.DEFAULT_COLORS[3]
        assert added[-1].id not in {h.id for h in three}
        assert len(three) == 3

    def test_add_clamps_prior(self):
        """Test that a new prior is clamped into [0, 1]."""
        added = hyp.add_hypothesis((), "X", prior=7.0)
        assert added[0].prior == 1.0

    def test_remove(self, three):
        """Test removing by id."""
        remaining = hyp.remove_hypothesis(three, "b")
        assert [h.id for h in remaining] == ["a", "c"]

    def test_remove_unknown_raises(self, three):
        """Test that unknown ids raise KeyError."""
        with pytest.raises(KeyError, match="zzz"):
            hyp.remove_hypothesis(three, "zzz")

    def test_reorder_returns_old_indices(self, three):
        """Test that reorder returns the permutation applied."""
        reordered, order = hyp.reorder_hypotheses(three, ["c", "a", "b"])
        assert [h.id for h in reordered] == ["c", "a", "b"]
        assert order == [2, 0, 1]

    @pytest.mark.parametrize("ids", [["a", "b"], ["a", "a", "b"], ["a", "b", "x"]])
    def test_reorder_requires_permutation(self, three, ids):
        """Test that partial, duplicate or foreign ids are rejected."""
        with pytest.raises(KeyError, match="permutation"):
            hyp.reorder_hypotheses(three, ids)

    def test_set_prior_clamps(self, three):
        """Test that set_prior clamps and leaves others untouched."""
        updated = hyp.set_prior(three, "a", 1.5)
        assert hyp.priors_of(updated) == [1.0, 0.3, 0.5]

    def test_rename(self, three):
        """Test renaming keeps id and prior."""
        updated = hyp.rename_hypothesis(three, "b", "Bravo")
        assert updated[1] == Hypothesis("b", "Bravo", 0.3)

    def test_normalize_priors(self):
        """Test prior normalization."""
        hs = (Hypothesis("a", "A", 0.2), Hypothesis("b", "B", 0.6))
        assert hyp.priors_of(hyp.normalize_priors(hs)) == pytest.approx([0.25, 0.75])

    def test_normalize_all_zero_is_uniform(self):
        """Test that all-zero priors normalize to uniform."""
        hs = (Hypothesis("a", "A", 0.0), Hypothesis("b", "B", 0.0))
        assert hyp.priors_of(hyp.normalize_priors(hs)) == [0.5, 0.5]


class TestMigrateHypotheses:
    """Tests for migrate_hypotheses."""

    def test_pads_to_default_count(self):
        """Test that short lists are padded."""
        repaired = hyp.migrate_hypotheses([{"id": "x", "label": "Only", "prior": 0.9}])
        assert len(repaired) == hyp.DEFAULT_HYPOTHESIS_COUNT
        assert repaired[0].id == "x"
        assert repaired[1].label == "H2"

    def test_repairs_bad_records(self):
        """Test that missing fields and bad priors are filled in."""
        repaired = hyp.migrate_hypotheses([
            {"prior": "high"},
            "junk",
            {"id": "z", "label": "Z", "prior": True},
        ])
        assert [h.id for h in repaired] == ["h1", "h2", "z"]
        assert [h.prior for h in repaired] == [0.5, 0.5, 0.5]

    def test_non_list_input(self):
        """Test that non-list input yields the default pair."""
        assert len(hyp.migrate_hypotheses(None)) == 2
