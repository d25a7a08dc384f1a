import numpy as np
import pytest

from mbsolver import (
    ConfigurationError,
    ConstraintRow,
    DanglingReferenceError,
    SystemDescriptor,
    VariableBlock,
)
from mbsolver.rows import contact_rows, velocity_equality_row


def _mixed_system():
    body = VariableBlock.body(2.0, [[1.0, 0.1, 0.0], [0.1, 2.0, 0.0], [0.0, 0.0, 3.0]], name="body")
    g2 = VariableBlock.generic([[2.0, 0.5], [0.5, 1.0]], name="g2")
    off = VariableBlock.generic([1.0], name="off")
    off.disabled = True
    g3 = VariableBlock.generic([1.0, 2.0, 3.0], name="g3")
    desc = SystemDescriptor()
    for blk in (body, g2, off, g3):
        desc.insert_variables(blk)
    desc.insert_constraint(ConstraintRow.equality(body, [1, 0, 0, 0, 1, 0], g2, [0.0, -1.0], rhs=0.1))
    desc.insert_constraint(ConstraintRow.unilateral(g2, [1.0, 1.0], g3, [0.0, 0.0, -2.0], compliance=0.01))
    desc.insert_constraint(ConstraintRow.boxed(-1.0, 1.0, g3, [1.0, 0.0, 0.0], off, [1.0]))
    desc.assemble()
    return desc, (body, g2, off, g3)


def test_offsets_tile_the_unknown_vector():
    desc, (body, g2, off, g3) = _mixed_system()
    assert desc.n_dof == 6 + 2 + 3
    assert off.offset == -1
    spans = sorted((b.offset, b.offset + b.dof) for b in desc.active_variables)
    assert spans[0][0] == 0
    for (_, end), (start, _) in zip(spans, spans[1:]):
        assert end == start
    assert spans[-1][1] == desc.n_dof
    # insertion order
    assert [body.offset, g2.offset, g3.offset] == [0, 6, 8]


def test_offsets_are_recomputed_after_membership_changes():
    desc, (body, g2, off, g3) = _mixed_system()
    off.disabled = False
    desc.clear_constraints()
    desc.remove_variables(g2)
    assert not desc.is_assembled
    desc.assemble()
    assert g2.offset == -1
    assert [body.offset, off.offset, g3.offset] == [0, 6, 7]
    assert desc.n_dof == 10


def test_unassembled_descriptor_refuses_operators():
    desc, _ = _mixed_system()
    desc.insert_variables(VariableBlock.generic([1.0]))
    with pytest.raises(ConfigurationError):
        desc.mass_times(np.zeros(12))


def test_duplicate_insertion_rejected():
    desc, (body, *_rest) = _mixed_system()
    with pytest.raises(ConfigurationError):
        desc.insert_variables(body)
    with pytest.raises(ConfigurationError):
        desc.insert_constraint(desc.constraints[0])


def test_row_referencing_foreign_block_fails_assembly():
    desc = SystemDescriptor()
    a = desc.insert_variables(VariableBlock.generic([1.0]))
    stranger = VariableBlock.generic([1.0])
    desc.insert_constraint(ConstraintRow.equality(a, [1.0], stranger, [-1.0]))
    with pytest.raises(DanglingReferenceError):
        desc.assemble()
    assert not desc.is_assembled
    assert a.offset == -1


def test_friction_row_without_its_normal_fails_assembly():
    desc = SystemDescriptor()
    a = desc.insert_variables(VariableBlock.body())
    normal, t1, t2 = contact_rows(a, None, point=(0, 0, 0), normal=(0, 0, 1), com_a=(0, 0, 0.5), mu=0.3)
    desc.insert_constraints([t1, t2])
    with pytest.raises(DanglingReferenceError):
        desc.assemble()


def test_sparse_view_matches_matrix_free_view():
    desc, _ = _mixed_system()
    rng = np.random.default_rng(7)
    v = rng.normal(size=desc.n_dof)
    lam = rng.normal(size=desc.n_constraints)

    M = desc.build_mass_matrix()
    Minv = desc.build_inverse_mass_matrix()
    J = desc.build_jacobian_matrix()
    E = desc.build_compliance_matrix()

    np.testing.assert_allclose(M @ v, desc.mass_times(v))
    np.testing.assert_allclose(Minv @ v, desc.inverse_mass_times(v))
    np.testing.assert_allclose((M @ Minv).toarray(), np.eye(desc.n_dof), atol=1e-12)
    np.testing.assert_allclose(J @ v, desc.jacobian_times(v))
    np.testing.assert_allclose(J.T @ lam, desc.jacobian_transpose_times(lam))
    np.testing.assert_allclose(E.diagonal(), [0.0, 0.01, 0.0])
    np.testing.assert_allclose(J @ (Minv @ (J.T @ lam)) + E @ lam, desc.schur_times(lam))
    np.testing.assert_allclose(desc.mass_diagonal(), M.diagonal())

    K = desc.build_system_matrix()
    n, m = desc.n_dof, desc.n_constraints
    assert K.shape == (n + m, n + m)
    np.testing.assert_allclose(K[:n, n:].toarray(), -J.T.toarray())


def test_packing_round_trip():
    desc, (body, g2, off, g3) = _mixed_system()
    g3.force = np.array([1.0, 2.0, 3.0])
    v_free = desc.free_velocity()
    np.testing.assert_allclose(v_free[8:11], [1.0, 1.0, 1.0])
    np.testing.assert_allclose(v_free[:8], 0.0)

    desc.scatter_velocities(np.arange(11.0))
    np.testing.assert_allclose(g2.velocity, [6.0, 7.0])
    np.testing.assert_allclose(desc.gather_velocities(), np.arange(11.0))

    desc.set_multipliers([1.0, 2.0, 3.0])
    np.testing.assert_allclose(desc.multipliers(), [1.0, 2.0, 3.0])
    with pytest.raises(ConfigurationError):
        desc.set_multipliers([1.0])


def test_bounds_arrays_index_friction_rows_by_their_normal():
    desc = SystemDescriptor()
    a = desc.insert_variables(VariableBlock.body())
    rows = contact_rows(a, None, point=(0, 0, 0), normal=(0, 0, 1), com_a=(0, 0, 0.5), mu=0.4)
    desc.insert_constraint(ConstraintRow.equality(a, [0, 0, 0, 0, 0, 1]))
    desc.insert_constraints(rows)
    desc.assemble()
    lo, hi, normal_index, mu = desc.bounds_arrays()
    np.testing.assert_array_equal(normal_index, [-1, -1, 1, 1])
    np.testing.assert_allclose(mu, [0.0, 0.0, 0.4, 0.4])
    assert lo[1] == 0.0 and np.isinf(hi[1])


def test_row_colors_partition_without_shared_blocks():
    blocks = [VariableBlock.generic([1.0]) for _ in range(5)]
    desc = SystemDescriptor()
    for b in blocks:
        desc.insert_variables(b)
    for i in range(4):
        desc.insert_constraint(velocity_equality_row(blocks[i], blocks[i + 1], axis=[1.0]))
    desc.insert_constraint(velocity_equality_row(blocks[0], blocks[4], axis=[1.0]))
    desc.assemble()

    colors = desc.row_colors()
    flat = [r for c in colors for r in c]
    assert len(flat) == desc.n_constraints
    assert {id(r) for r in flat} == {id(r) for r in desc.active_constraints}
    for color in colors:
        seen = set()
        for r in color:
            ids = {id(v) for v in r.variables}
            assert seen.isdisjoint(ids)
            seen |= ids
    assert len(colors) >= 2
