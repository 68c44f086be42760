"""Tests for random-effect block specifications."""

import numpy as np
import pandas as pd
import pytest

from bayes_margins.random_effects import BoundBlock, RandomEffectBlock

# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def data():
    return pd.DataFrame(
        {"x": [0.0, 1.0, 2.0, 3.0], "id": ["b", "a", "b", "c"], "site": [1, 1, 2, 2]}
    )


@pytest.fixture()
def draws():
    return pd.DataFrame(
        {
            "b_Intercept": [0.1, 0.2, 0.3],
            "sd_id__Intercept": [1.0, 1.5, 2.0],
            "sd_id__x": [0.2, 0.3, 0.4],
            "cor_id__Intercept__x": [0.5, 0.0, -0.3],
            "r_id[a,Intercept]": [0.1, 0.2, 0.3],
            "r_id[b,Intercept]": [-0.1, -0.2, -0.3],
            "r_id[c,Intercept]": [0.0, 0.5, 1.0],
            "r_id[a,x]": [0.01, 0.02, 0.03],
            "r_id[b,x]": [0.0, 0.0, 0.0],
            "r_id[c,x]": [1.0, 1.0, 1.0],
        }
    )


# ------------------------------------------------------------------ #
# Construction
# ------------------------------------------------------------------ #


class TestConstruction:
    def test_single_term_sd_vector(self):
        block = RandomEffectBlock(terms=("Intercept",), sd=np.array([1.0, 2.0]), group="id")
        assert block.sd.shape == (2, 1)
        assert block.chol is None
        assert block.name == "id"
        assert block.n_draws == 2
        assert block.n_terms == 1

    def test_shared_factor_broadcast_over_draws(self):
        U = np.array([[1.0, 0.6], [0.0, 0.8]])
        block = RandomEffectBlock(
            terms=("Intercept", "x"), sd=np.ones((3, 2)), chol=U, group="id"
        )
        assert block.chol.shape == (3, 2, 2)
        np.testing.assert_array_equal(block.chol[2], U)

    def test_no_terms_rejected(self):
        with pytest.raises(ValueError, match="at least one term"):
            RandomEffectBlock(terms=(), sd=np.ones((2, 1)))

    def test_sd_shape_mismatch(self):
        with pytest.raises(ValueError, match=r"shape \(n_draws, 2\)"):
            RandomEffectBlock(terms=("Intercept", "x"), sd=np.ones((3, 1)), group="id")

    def test_missing_factor_for_two_terms(self):
        with pytest.raises(ValueError, match="Block 'id'.*Cholesky factor is required"):
            RandomEffectBlock(terms=("Intercept", "x"), sd=np.ones((3, 2)), group="id")

    def test_bad_factor_names_draw(self):
        chol = np.stack([np.eye(2), np.array([[1.0, 0.0], [0.0, -1.0]])])
        with pytest.raises(ValueError, match="draw 1"):
            RandomEffectBlock(terms=("Intercept", "x"), sd=np.ones((2, 2)), chol=chol)

    def test_group_effects_need_levels(self):
        with pytest.raises(ValueError, match="require levels"):
            RandomEffectBlock(
                terms=("Intercept",), sd=np.ones((2, 1)), group_effects=np.zeros((2, 3, 1))
            )

    def test_group_effects_shape_checked(self):
        with pytest.raises(ValueError, match=r"group_effects must have shape \(2, 3, 1\)"):
            RandomEffectBlock(
                terms=("Intercept",),
                sd=np.ones((2, 1)),
                group_effects=np.zeros((2, 2, 1)),
                levels=("a", "b", "c"),
            )


# ------------------------------------------------------------------ #
# from_draws
# ------------------------------------------------------------------ #


class TestFromDraws:
    def test_intercept_only(self, draws):
        block = RandomEffectBlock.from_draws(draws, "id")
        assert block.terms == ("Intercept",)
        np.testing.assert_array_equal(block.sd[:, 0], [1.0, 1.5, 2.0])
        assert block.chol is None
        assert block.group_effects is None

    def test_correlation_columns(self, draws):
        block = RandomEffectBlock.from_draws(draws, "id", terms=("Intercept", "x"))
        assert block.chol.shape == (3, 2, 2)
        for d, r in enumerate([0.5, 0.0, -0.3]):
            omega = block.chol[d].T @ block.chol[d]
            np.testing.assert_allclose(omega, [[1.0, r], [r, 1.0]], atol=1e-12)

    def test_cholesky_columns(self):
        # Lower factor of [[1, 0.6], [0.6, 1]], column-major.
        draws = pd.DataFrame(
            {
                "sd_id__Intercept": [1.0],
                "sd_id__x": [0.5],
                "L_id[1,1]": [1.0],
                "L_id[2,1]": [0.6],
                "L_id[1,2]": [0.0],
                "L_id[2,2]": [0.8],
            }
        )
        block = RandomEffectBlock.from_draws(draws, "id", terms=("Intercept", "x"))
        np.testing.assert_allclose(block.chol[0], [[1.0, 0.6], [0.0, 0.8]])

    def test_missing_sd_column(self, draws):
        with pytest.raises(ValueError, match="sd_site__Intercept"):
            RandomEffectBlock.from_draws(draws, "site")

    def test_missing_correlation(self):
        draws = pd.DataFrame({"sd_id__Intercept": [1.0], "sd_id__x": [0.5]})
        with pytest.raises(ValueError, match="neither correlation column"):
            RandomEffectBlock.from_draws(draws, "id", terms=("Intercept", "x"))

    def test_group_effects(self, draws):
        block = RandomEffectBlock.from_draws(
            draws, "id", terms=("Intercept", "x"), group_effects=True
        )
        assert block.levels == ("a", "b", "c")
        assert block.group_effects.shape == (3, 3, 2)
        np.testing.assert_array_equal(block.group_effects[:, 2, 1], [1.0, 1.0, 1.0])

    def test_group_effects_missing(self):
        draws = pd.DataFrame({"sd_id__Intercept": [1.0]})
        with pytest.raises(ValueError, match=r"no 'r_id\[level,term\]' columns"):
            RandomEffectBlock.from_draws(draws, "id", group_effects=True)

    def test_data_group_override(self, draws):
        block = RandomEffectBlock.from_draws(draws, "id", data_group="subject")
        assert block.group == "subject"
        assert block.name == "id"


# ------------------------------------------------------------------ #
# Binding
# ------------------------------------------------------------------ #


class TestBinding:
    def test_codes_follow_sorted_labels(self, data, draws):
        block = RandomEffectBlock.from_draws(draws, "id")
        bound = block.bind(data)
        assert isinstance(bound, BoundBlock)
        np.testing.assert_array_equal(bound.codes, [1, 0, 1, 2])
        np.testing.assert_array_equal(bound.design, np.ones((4, 1)))
        assert bound.n_rows == 4
        assert bound.n_draws == 3

    def test_slope_design(self, data, draws):
        block = RandomEffectBlock.from_draws(draws, "id", terms=("Intercept", "x"))
        np.testing.assert_array_equal(block.bind(data).design[:, 1], data["x"])

    def test_no_group_column_is_one_group(self, data):
        block = RandomEffectBlock(terms=("Intercept",), sd=np.ones((2, 1)))
        np.testing.assert_array_equal(block.group_codes(data), [0, 0, 0, 0])
        np.testing.assert_array_equal(block.group_keys(data), [0, 0, 0, 0])

    def test_group_keys_do_not_depend_on_other_groups(self, data, draws):
        block = RandomEffectBlock.from_draws(draws, "id")
        keys = block.group_keys(data)
        assert keys.dtype == np.uint64
        assert keys[0] == keys[2]
        assert len(set(keys.tolist())) == 3
        alone = block.group_keys(data[data["id"] == "b"])
        np.testing.assert_array_equal(alone, keys[[0, 2]])
        np.testing.assert_array_equal(block.bind(data).keys, keys)

    def test_bound_keys_default_to_codes(self):
        bound = BoundBlock("g", np.ones((3, 1)), np.array([0, 2, 0]), np.ones((2, 1)))
        np.testing.assert_array_equal(bound.keys, [0, 2, 0])
        assert bound.keys.dtype == np.uint64

    def test_bound_keys_length_checked(self):
        with pytest.raises(ValueError, match="group keys for 3 rows"):
            BoundBlock(
                "g", np.ones((3, 1)), np.array([0, 1, 0]), np.ones((2, 1)),
                keys=np.array([5, 6], dtype=np.uint64),
            )

    def test_missing_group_column(self, data, draws):
        block = RandomEffectBlock.from_draws(draws, "id", data_group="subject")
        with pytest.raises(ValueError, match="group column 'subject'"):
            block.bind(data)

    def test_missing_design_term(self, data):
        block = RandomEffectBlock(
            terms=("Intercept", "w"), sd=np.ones((1, 2)), chol=np.eye(2), group="id"
        )
        with pytest.raises(ValueError, match="block 'id'"):
            block.bind(data)

    def test_missing_label_names_row(self, data, draws):
        data.loc[2, "id"] = None
        block = RandomEffectBlock.from_draws(draws, "id")
        with pytest.raises(ValueError, match="row 2"):
            block.bind(data)


class TestLevelPositions:
    def test_positions(self, data, draws):
        block = RandomEffectBlock.from_draws(draws, "id", group_effects=True)
        np.testing.assert_array_equal(block.level_positions(data), [1, 0, 1, 2])

    def test_unknown_level(self, data, draws):
        data.loc[0, "id"] = "z"
        block = RandomEffectBlock.from_draws(draws, "id", group_effects=True)
        with pytest.raises(ValueError, match=r"\['z'\].*not in the fitted model") as info:
            block.level_positions(data)
        assert "np.str_" not in str(info.value)

    def test_unknown_levels_listed_once_sorted(self, data, draws):
        data["id"] = ["y", "a", "x", "y"]
        block = RandomEffectBlock.from_draws(draws, "id", group_effects=True)
        with pytest.raises(ValueError, match=r"\['x', 'y'\]"):
            block.level_positions(data)

    def test_requires_group_effects(self, data, draws):
        block = RandomEffectBlock.from_draws(draws, "id")
        with pytest.raises(ValueError, match="no group-specific effects"):
            block.level_positions(data)

    def test_numeric_labels_match_string_levels(self, data):
        draws = pd.DataFrame(
            {
                "sd_site__Intercept": [1.0],
                "r_site[1,Intercept]": [0.3],
                "r_site[2,Intercept]": [-0.3],
            }
        )
        block = RandomEffectBlock.from_draws(draws, "site", group_effects=True)
        np.testing.assert_array_equal(block.level_positions(data), [0, 0, 1, 1])


class TestBoundBlock:
    def test_code_count_mismatch(self):
        with pytest.raises(ValueError, match="2 group codes for 3 rows"):
            BoundBlock("g", np.ones((3, 1)), np.array([0, 1]), np.ones((2, 1)))

    def test_negative_codes(self):
        with pytest.raises(ValueError, match="non-negative integers"):
            BoundBlock("g", np.ones((2, 1)), np.array([0, -1]), np.ones((2, 1)))

    def test_float_codes(self):
        with pytest.raises(ValueError, match="non-negative integers"):
            BoundBlock("g", np.ones((2, 1)), np.array([0.0, 1.0]), np.ones((2, 1)))

    def test_non_finite_design(self):
        design = np.array([[1.0, 0.0], [1.0, np.inf]])
        with pytest.raises(ValueError, match="row 1"):
            BoundBlock("g", design, np.array([0, 0]), np.ones((1, 2)), np.eye(2)[None])

    def test_column_mismatch(self):
        with pytest.raises(ValueError, match="2 columns but sd has 1"):
            BoundBlock("g", np.ones((2, 2)), np.array([0, 0]), np.ones((1, 1)))
