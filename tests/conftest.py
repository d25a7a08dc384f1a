import numpy as np
import pytest

import mbsolver  # noqa: F401  (applies the JAX CPU/x64 config)
from mbsolver import ConstraintRow, SystemDescriptor, VariableBlock
from mbsolver.rows import velocity_equality_row


def build_two_body_system():
    """Masses 1 and 2, one equality row tying their x velocities together."""
    a = VariableBlock.body(1.0, name="a")
    b = VariableBlock.body(2.0, name="b")
    desc = SystemDescriptor()
    desc.insert_variables(a)
    desc.insert_variables(b)
    row = desc.insert_constraint(velocity_equality_row(a, b, axis=(1.0, 0.0, 0.0), key="tie"))
    desc.assemble()
    v_free = np.zeros(12)
    v_free[0] = 5.0
    return desc, a, b, row, v_free


def build_chain(masses, free):
    """1-DOF generic blocks chained by equality rows v_i - v_{i+1} = 0."""
    blocks = [VariableBlock.generic([m], name=f"p{i}") for i, m in enumerate(masses)]
    desc = SystemDescriptor()
    for blk in blocks:
        desc.insert_variables(blk)
    rows = []
    for i in range(len(blocks) - 1):
        rows.append(desc.insert_constraint(ConstraintRow.equality(blocks[i], [1.0], blocks[i + 1], [-1.0], key=i)))
    desc.assemble()
    return desc, blocks, rows, np.asarray(free, dtype=np.float64)


@pytest.fixture
def two_body_system():
    return build_two_body_system()


@pytest.fixture
def chain_system():
    return build_chain([1.0, 2.0, 3.0, 4.0], [4.0, 0.0, 0.0, -2.0])
