import numpy as np
import pytest

from mbsolver import MultiplierCache, SolverSettings, SystemDescriptor, VariableBlock, solve
from mbsolver.rows import contact_rows


def _resting_box(body):
    rows = []
    for i, (x, y) in enumerate([(-0.5, -0.5), (-0.5, 0.5), (0.5, -0.5), (0.5, 0.5)]):
        rows += contact_rows(body, None, point=(x, y, 0.0), normal=(0, 0, 1), com_a=(0, 0, 0.5), mu=0.0, key=("box", i))
    return rows


def test_store_and_apply_by_key():
    body = VariableBlock.body()
    rows = contact_rows(body, None, point=(0, 0, 0), normal=(0, 0, 1), com_a=(0, 0, 0), mu=0.5, key="c")
    for r, value in zip(rows, (2.0, 0.5, -0.25)):
        r.multiplier = value

    cache = MultiplierCache(decay=0.5, friction_decay=0.0)
    assert cache.store(rows) == 3
    assert ("c", "n") in cache
    assert cache.get(("c", "t1")) == 0.5

    fresh = contact_rows(body, None, point=(0, 0, 0), normal=(0, 0, 1), com_a=(0, 0, 0), mu=0.5, key="c")
    unkeyed = contact_rows(body, None, point=(1, 0, 0), normal=(0, 0, 1), com_a=(0, 0, 0), mu=0.5)
    for r in unkeyed:
        r.multiplier = 9.0
    assert cache.apply(fresh + unkeyed) == 3
    assert [r.multiplier for r in fresh] == pytest.approx([1.0, 0.0, 0.0])
    assert all(r.multiplier == 0.0 for r in unkeyed)

    cache.clear()
    assert len(cache) == 0


def test_cache_seeds_rebuilt_contacts():
    body = VariableBlock.body(1.0, [1.0 / 6.0] * 3)
    v_free = np.array([0.0, 0.0, -1.0, 0.0, 0.0, 0.0])
    settings = SolverSettings(max_iterations=20000, tolerance=1e-10, warm_start=True)
    cache = MultiplierCache()

    desc = SystemDescriptor()
    desc.insert_variables(body)
    first_rows = _resting_box(body)
    desc.insert_constraints(first_rows)
    cold = solve(desc, settings, free_velocity=v_free)
    cache.store(first_rows)

    # collision detection recreates the rows next step
    desc.clear_constraints()
    rows = _resting_box(body)
    desc.insert_constraints(rows)
    assert cache.apply(rows) == len(rows)
    warm = solve(desc, settings, free_velocity=v_free)

    assert warm.converged
    assert warm.iterations_used < cold.iterations_used
    np.testing.assert_allclose(warm.velocities, cold.velocities, atol=1e-8)
