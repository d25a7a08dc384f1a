import numpy as np
import pytest

from conftest import build_chain
from mbsolver import APGDSolver, SolverSettings, SystemDescriptor, VariableBlock, solve
from mbsolver.rows import contact_rows


SETTINGS = SolverSettings(max_iterations=5000, tolerance=1e-10, warm_start=False)


def test_two_body_scenario(two_body_system):
    desc, a, b, row, v_free = two_body_system
    result = APGDSolver(SETTINGS).solve(desc, free_velocity=v_free)
    assert result.converged
    assert result.velocities[0] == pytest.approx(5.0 / 3.0, abs=1e-6)
    assert result.velocities[6] == pytest.approx(5.0 / 3.0, abs=1e-6)
    assert row.multiplier == pytest.approx(-10.0 / 3.0, abs=1e-6)


def test_agrees_with_gauss_seidel_on_equality_chain():
    masses, free = [1.0, 2.0, 3.0, 4.0, 5.0], [1.0, -2.0, 3.0, 0.0, 1.0]
    desc, _, _, v_free = build_chain(masses, free)
    ref = solve(desc, SolverSettings(max_iterations=5000, tolerance=1e-12, warm_start=False), free_velocity=v_free)

    desc, _, _, v_free = build_chain(masses, free)
    result = APGDSolver(SETTINGS).solve(desc, free_velocity=v_free)
    assert result.converged
    np.testing.assert_allclose(result.velocities, ref.velocities, atol=1e-7)
    np.testing.assert_allclose(result.multipliers, ref.multipliers, atol=1e-6)


def test_sliding_contact_with_friction():
    body = VariableBlock.body(1.0)
    desc = SystemDescriptor()
    desc.insert_variables(body)
    n, t1, t2 = contact_rows(body, None, point=(0, 0, 0), normal=(0, 0, 1), com_a=(0, 0, 0), mu=0.1)
    desc.insert_constraints([n, t1, t2])
    v_free = np.array([5.0, 0.0, -1.0, 0.0, 0.0, 0.0])

    result = APGDSolver(SETTINGS).solve(desc, free_velocity=v_free)
    assert result.velocities[2] == pytest.approx(0.0, abs=1e-8)
    assert result.velocities[0] == pytest.approx(4.9, abs=1e-8)
    assert n.multiplier == pytest.approx(1.0, abs=1e-8)


def test_warm_started_solution_needs_no_iterations(chain_system):
    desc, _, _, v_free = chain_system
    solve(desc, SolverSettings(max_iterations=5000, tolerance=1e-12, warm_start=False), free_velocity=v_free)
    result = APGDSolver(SolverSettings(max_iterations=50, tolerance=1e-9, warm_start=True)).solve(desc, free_velocity=v_free)
    assert result.converged
    assert result.iterations_used == 0
    np.testing.assert_allclose(result.velocities, -0.4, atol=1e-8)


def test_iteration_cap_keeps_best_iterate(chain_system):
    desc, _, _, v_free = chain_system
    result = APGDSolver(SolverSettings(max_iterations=2, tolerance=0.0, warm_start=False, record_history=True)).solve(
        desc, free_velocity=v_free
    )
    assert not result.converged
    assert result.iterations_used == 2
    assert len(result.residual_history) == 2
    assert result.final_residual <= min(result.residual_history)


def test_no_rows():
    desc = SystemDescriptor()
    desc.insert_variables(VariableBlock.generic([1.0, 1.0]))
    result = APGDSolver().solve(desc, free_velocity=[1.0, 2.0])
    np.testing.assert_allclose(result.velocities, [1.0, 2.0])
    assert result.iterations_used == 0
