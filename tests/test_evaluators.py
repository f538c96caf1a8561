"""Unit tests for single-timestep and cast collision evaluators."""

from dataclasses import replace

import numpy as np
import pytest

from trajopt_collision import (
    STATIC_FILTER,
    CastCollisionEvaluator,
    CastPhase,
    CollisionChecker,
    CollisionConfig,
    Contact,
    LinkSphere,
    SingleTimestepCollisionEvaluator,
    SphereObstacle,
    pair_weights,
)


# Variables 1..3 hold the robot position, the rest is unrelated
VARS = [1, 2, 3]
X0 = np.array([9.0, 0.3, 0.2, 0.0, -9.0])

# Group bits of the dynamic obstacle in mixed_checker
DYNAMIC_FILTER = 4

# Cast segment passing below the ball (see ball_checker)
CAST_X = np.array([-0.6, 0.25, 0.0, 0.6, 0.25, 0.0])


def _contact(link_a, link_b, distance=0.0):
    return Contact(
        link_a=link_a,
        link_b=link_b,
        point_a=np.zeros(3),
        point_b=np.zeros(3),
        normal_b2a=np.array([0.0, 0.0, 1.0]),
        distance=distance,
    )


# ============================================================
# TestPairWeights
# ============================================================

class TestPairWeights:
    """Tests for per-pair contact weighting."""

    def test_weights_are_one_over_k(self):
        contacts = [
            _contact("base", "ball"),
            _contact("base", "ball"),
            _contact("tip", "post"),
            _contact("base", "ball"),
        ]
        weights = pair_weights(contacts)
        np.testing.assert_allclose(weights, [1 / 3, 1 / 3, 1.0, 1 / 3])

    def test_pair_is_unordered(self):
        """(a, b) and (b, a) are the same pair."""
        weights = pair_weights([_contact("upper", "lower"), _contact("lower", "upper")])
        np.testing.assert_allclose(weights, [0.5, 0.5])

    def test_weights_sum_to_one_per_pair(self):
        rng = np.random.default_rng(0)
        pairs = [("base", "ball"), ("tip", "ball"), ("base", "tip")]
        contacts = [_contact(*pairs[i]) for i in rng.integers(0, 3, 20)]
        weights = pair_weights(contacts)

        for pair in set(c.pair for c in contacts):
            total = sum(w for c, w in zip(contacts, weights) if c.pair == pair)
            assert total == pytest.approx(1.0)

    def test_empty(self):
        assert len(pair_weights([])) == 0


# ============================================================
# TestSingleTimestepEvaluator
# ============================================================

class TestSingleTimestepEvaluator:
    """Tests for the discrete evaluator."""

    def test_dists_and_weights(self, robot, ball_checker):
        calc = SingleTimestepCollisionEvaluator(robot, ball_checker, VARS)
        dists, weights = calc.calc_dists(X0)

        np.testing.assert_allclose(dists, [np.sqrt(0.13) - 0.3])
        np.testing.assert_allclose(weights, [1.0])

    def test_expression_matches_distance_at_x(self, robot, ball_checker):
        """Zero-order consistency of the linearization."""
        calc = SingleTimestepCollisionEvaluator(robot, ball_checker, VARS)
        exprs, weights = calc.calc_dist_expressions(X0)
        dists, _ = calc.calc_dists(X0)

        assert len(exprs) == len(dists) == 1
        assert exprs[0].value(X0) == pytest.approx(dists[0], abs=1e-12)
        assert set(exprs[0].coeffs) <= set(VARS)

    def test_expression_first_order(self, robot, ball_checker):
        """A small step agrees with the true distance to first order."""
        calc = SingleTimestepCollisionEvaluator(robot, ball_checker, VARS)
        exprs, _ = calc.calc_dist_expressions(X0)

        step = np.zeros_like(X0)
        step[VARS] = 1e-4 * np.array([1.0, -1.0, 0.5])
        true_dists, _ = calc.calc_dists(X0 + step)

        assert abs(exprs[0].value(X0 + step) - true_dists[0]) < 1e-6
        # Linear model must actually move with the step
        assert abs(exprs[0].value(X0 + step) - exprs[0].value(X0)) > 1e-5

    def test_multiple_contacts_per_pair(self, robot):
        """Two spheres of one link near one obstacle share the pair weight."""
        checker = CollisionChecker(
            CollisionConfig(
                contact_distance=0.1,
                link_spheres=[
                    LinkSphere("base", 0.1),
                    LinkSphere("base", 0.1, offset=[0.0, 0.05, 0.0]),
                    LinkSphere("tip", 0.05),
                ],
            ),
            obstacles=[
                SphereObstacle("ball", np.zeros(3), 0.2),
                SphereObstacle("post", [0.8, 0.5, 0.0], 0.2),
            ],
        )
        calc = SingleTimestepCollisionEvaluator(robot, checker, VARS)

        contacts = calc.calc_collisions(X0)
        _, weights = calc.calc_dists(X0)
        exprs, expr_weights = calc.calc_dist_expressions(X0)

        assert [c.pair for c in contacts] == [
            ("base", "ball"), ("base", "ball"), ("tip", "post"),
        ]
        np.testing.assert_allclose(weights, [0.5, 0.5, 1.0])
        np.testing.assert_allclose(expr_weights, weights)
        assert len(exprs) == 3

    def test_no_contacts(self, robot, ball_checker):
        """A free configuration gives empty outputs."""
        calc = SingleTimestepCollisionEvaluator(robot, ball_checker, VARS)
        x = np.array([0.0, 3.0, 3.0, 3.0, 0.0])

        assert calc.calc_collisions(x) == []
        dists, weights = calc.calc_dists(x)
        exprs, expr_weights = calc.calc_dist_expressions(x)
        assert len(dists) == len(weights) == 0
        assert exprs == [] and len(expr_weights) == 0

    def test_static_side_has_no_coefficients(self, robot, ball_checker):
        """Only the robot side of a contact contributes to the gradient."""
        calc = SingleTimestepCollisionEvaluator(robot, ball_checker, VARS)
        exprs, _ = calc.calc_dist_expressions(X0)

        normal = np.array([0.3, 0.2, 0.0]) / np.sqrt(0.13)
        coeffs = [exprs[0].coeffs.get(i, 0.0) for i in VARS]
        np.testing.assert_allclose(coeffs, normal, atol=1e-12)

    def test_foreign_contacts_dropped(self, robot, fixed_checker):
        """Contacts between bodies that are not robot links are ignored."""
        checker = fixed_checker([
            _contact("base", "table", 0.01),
            _contact("crate", "table", 0.0),
        ])
        calc = SingleTimestepCollisionEvaluator(robot, checker, [0, 1, 2])
        dists, weights = calc.calc_dists(np.zeros(3))
        np.testing.assert_allclose(dists, [0.01])
        np.testing.assert_allclose(weights, [1.0])

    def test_wrong_number_of_vars(self, robot, ball_checker):
        with pytest.raises(ValueError):
            SingleTimestepCollisionEvaluator(robot, ball_checker, [0, 1])

    def test_backend_failure_propagates(self, robot, ball_checker):
        """Invalid configurations raise and leave nothing in the cache."""
        calc = SingleTimestepCollisionEvaluator(robot, ball_checker, VARS)
        x = X0.copy()
        x[2] = np.nan

        with pytest.raises(ValueError):
            calc.calc_dists(x)
        with pytest.raises(ValueError):
            calc.calc_dist_expressions(x)
        assert len(calc.cache) == 0


# ============================================================
# TestCaching
# ============================================================

class TestCaching:
    """Tests that repeated evaluation does not re-query the backend."""

    def test_dists_and_expressions_share_query(self, robot, counting_checker):
        calc = SingleTimestepCollisionEvaluator(robot, counting_checker, VARS)

        calc.calc_dists(X0)
        calc.calc_dist_expressions(X0)
        calc.calc_dists(X0.copy())
        assert counting_checker.n_discrete == 1

    def test_unrelated_variables_do_not_invalidate(self, robot, counting_checker):
        """The key only covers the evaluator's own variables."""
        calc = SingleTimestepCollisionEvaluator(robot, counting_checker, VARS)
        x = X0.copy()

        calc.calc_dists(x)
        x[0] += 1.0
        x[4] -= 1.0
        calc.calc_dists(x)
        assert counting_checker.n_discrete == 1

    def test_cached_result_identical(self, robot, counting_checker):
        calc = SingleTimestepCollisionEvaluator(robot, counting_checker, VARS)
        first = calc.get_collisions_cached(X0)
        second = calc.get_collisions_cached(X0)
        assert first == second
        assert all(a is b for a, b in zip(first, second))
        assert counting_checker.n_discrete == 1

    def test_caller_changes_do_not_leak_into_cache(self, robot, counting_checker):
        """Editing a returned list leaves later hits untouched."""
        calc = SingleTimestepCollisionEvaluator(robot, counting_checker, VARS)
        first = calc.get_collisions_cached(X0)
        n_contacts = len(first)

        first.append(first[0])
        first.clear()

        assert len(calc.get_collisions_cached(X0)) == n_contacts > 0
        dists, _ = calc.calc_dists(X0)
        assert len(dists) == n_contacts
        assert counting_checker.n_discrete == 1

    def test_eviction_requeries(self, robot, counting_checker):
        """After three newer points the oldest one is queried again."""
        calc = SingleTimestepCollisionEvaluator(robot, counting_checker, VARS)
        xs = [X0 + np.array([0.0, 0.01 * i, 0.0, 0.0, 0.0]) for i in range(4)]

        for x in xs[:3]:
            calc.calc_dists(x)
        calc.calc_dists(xs[0])
        assert counting_checker.n_discrete == 3

        calc.calc_dists(xs[3])
        calc.calc_dists(xs[0])
        assert counting_checker.n_discrete == 5

    def test_cast_uses_cache(self, robot, counting_checker):
        calc = CastCollisionEvaluator(robot, counting_checker, [0, 1, 2], [3, 4, 5])
        calc.calc_dists(CAST_X)
        calc.calc_dist_expressions(CAST_X)
        assert counting_checker.n_swept == 1
        assert counting_checker.n_discrete == 0


# ============================================================
# TestCastEvaluator
# ============================================================

class TestCastEvaluator:
    """Tests for the swept evaluator."""

    def _base_index(self, contacts):
        return [c.link_a for c in contacts].index("base")

    def test_contact_between_waypoints(self, robot, ball_checker):
        """The segment dips into the ball although both ends are clear."""
        calc = CastCollisionEvaluator(robot, ball_checker, [0, 1, 2], [3, 4, 5])
        single0 = SingleTimestepCollisionEvaluator(robot, ball_checker, [0, 1, 2])
        single1 = SingleTimestepCollisionEvaluator(robot, ball_checker, [3, 4, 5])

        contacts = calc.calc_collisions(CAST_X)
        base = contacts[self._base_index(contacts)]
        assert base.phase is CastPhase.BETWEEN
        assert base.distance == pytest.approx(-0.05)

        for single in (single0, single1):
            assert all(c.link_a != "base" for c in single.calc_collisions(CAST_X))

    def test_expression_splits_between_endpoints(self, robot, ball_checker):
        """Sensitivity is shared (1 - t) : t between the two waypoints."""
        calc = CastCollisionEvaluator(robot, ball_checker, [0, 1, 2], [3, 4, 5])
        contacts = calc.get_collisions_cached(CAST_X)
        exprs, _ = calc.calc_dist_expressions(CAST_X)
        i = self._base_index(contacts)
        t = contacts[i].time

        coeffs = np.array([exprs[i].coeffs.get(k, 0.0) for k in range(6)])
        normal = contacts[i].normal_b2a
        np.testing.assert_allclose(coeffs[:3], (1 - t) * normal, atol=1e-12)
        np.testing.assert_allclose(coeffs[3:], t * normal, atol=1e-12)
        assert exprs[i].value(CAST_X) == pytest.approx(contacts[i].distance, abs=1e-12)

    def test_expression_first_order(self, robot, ball_checker):
        """Linearized swept distance agrees with a fresh swept check."""
        calc = CastCollisionEvaluator(robot, ball_checker, [0, 1, 2], [3, 4, 5])
        exprs, _ = calc.calc_dist_expressions(CAST_X)
        i = self._base_index(calc.get_collisions_cached(CAST_X))

        step = 1e-4 * np.array([0.3, -0.5, 0.2, -0.4, 0.6, 0.1])
        moved = calc.calc_collisions(CAST_X + step)
        true_dist = moved[self._base_index(moved)].distance

        assert abs(exprs[i].value(CAST_X + step) - true_dist) < 1e-6

    def test_degenerate_segment_matches_single(self, robot, ball_checker):
        """vars0 == vars1 values reduce to the single-timestep evaluator."""
        q = X0[VARS]
        x = np.concatenate([q, q])
        cast = CastCollisionEvaluator(robot, ball_checker, [0, 1, 2], [3, 4, 5])
        single = SingleTimestepCollisionEvaluator(robot, ball_checker, [0, 1, 2])

        cast_contacts = cast.calc_collisions(x)
        single_contacts = single.calc_collisions(x)
        assert len(cast_contacts) == len(single_contacts) > 0
        for cc, sc in zip(cast_contacts, single_contacts):
            assert cc.phase is CastPhase.TIME0
            np.testing.assert_array_equal(cc.point_a1, cc.point_a)
            np.testing.assert_array_equal(cc.point_b1, cc.point_b)
            # Only the end witnesses distinguish a cast contact
            assert replace(cc, point_a1=None, point_b1=None) == sc

        cast_dists, cast_weights = cast.calc_dists(x)
        single_dists, single_weights = single.calc_dists(x)
        np.testing.assert_array_equal(cast_dists, single_dists)
        np.testing.assert_array_equal(cast_weights, single_weights)

        cast_exprs, _ = cast.calc_dist_expressions(x)
        single_exprs, _ = single.calc_dist_expressions(x)
        for ce, se in zip(cast_exprs, single_exprs):
            assert ce.constant == pytest.approx(se.constant)
            assert ce.coeffs == pytest.approx(se.cleanup().coeffs)

    def test_vars_cover_both_waypoints(self, robot, ball_checker):
        calc = CastCollisionEvaluator(robot, ball_checker, [0, 1, 2], [3, 4, 5])
        np.testing.assert_array_equal(calc.vars, [0, 1, 2, 3, 4, 5])

    def test_wrong_number_of_vars(self, robot, ball_checker):
        with pytest.raises(ValueError):
            CastCollisionEvaluator(robot, ball_checker, [0, 1, 2], [3, 4])


# ============================================================
# TestFilterMask
# ============================================================

class TestFilterMask:
    """Tests that the filter mask reaches the backend unchanged."""

    Q = np.array([0.35, 0.0, 0.0])
    SEGMENT = np.array([0.35, 0.0, 0.0, 0.40, 0.0, 0.0])

    def test_default_mask_sees_all_groups(self, robot, mixed_checker):
        calc = SingleTimestepCollisionEvaluator(robot, mixed_checker, [0, 1, 2])
        contacts = calc.get_collisions_cached(self.Q)
        assert sorted(c.link_b for c in contacts) == ["ball", "drone"]

    def test_single_timestep_mask(self, robot, counting_mixed_checker):
        counting = counting_mixed_checker
        calc = SingleTimestepCollisionEvaluator(
            robot, counting, [0, 1, 2], filter_mask=STATIC_FILTER,
        )

        dists, weights = calc.calc_dists(self.Q)
        assert counting.masks == [STATIC_FILTER]
        assert [c.link_b for c in calc.get_collisions_cached(self.Q)] == ["ball"]
        np.testing.assert_allclose(dists, [0.05])
        np.testing.assert_allclose(weights, [1.0])

    def test_cast_mask(self, robot, counting_mixed_checker):
        counting = counting_mixed_checker
        calc = CastCollisionEvaluator(
            robot, counting, [0, 1, 2], [3, 4, 5], filter_mask=DYNAMIC_FILTER,
        )

        exprs, _ = calc.calc_dist_expressions(self.SEGMENT)
        assert counting.masks == [DYNAMIC_FILTER]
        assert counting.n_swept == 1
        assert [c.link_b for c in calc.get_collisions_cached(self.SEGMENT)] == ["drone"]
        assert len(exprs) == 1
