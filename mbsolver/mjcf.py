from __future__ import annotations

import logging
import os

import numpy as np
import mujoco

from .mass import SharedMassPool
from .variables import VariableBlock

logger = logging.getLogger(__name__)


def load_model(xml: str | os.PathLike | mujoco.MjModel) -> mujoco.MjModel:
    """Accept an MjModel, an MJCF path or an MJCF string."""
    if isinstance(xml, mujoco.MjModel):
        return xml
    text = os.fspath(xml)
    if text.lstrip().startswith("<"):
        return mujoco.MjModel.from_xml_string(text)
    return mujoco.MjModel.from_xml_path(text)


def variables_from_mjcf(
    xml,
    pool: SharedMassPool | None = None,
    share_identical: bool = True,
    decimals: int = 12,
) -> tuple[dict[str, VariableBlock], SharedMassPool | None]:
    """One rigid-body Variable Block per MuJoCo body with positive mass.

    The world body (id 0) and massless bodies are skipped. With
    `share_identical`, bodies whose mass and principal inertia agree to
    `decimals` places reference one entry of a shared mass pool instead of
    each owning a copy. Inertia is the principal (diagonal) inertia MuJoCo
    reports in each body's inertial frame.

    Returns (blocks keyed by body name in body-id order, pool or None).
    """
    model = load_model(xml)
    if share_identical and pool is None:
        pool = SharedMassPool()

    blocks: dict[str, VariableBlock] = {}
    seen: dict[tuple, object] = {}

    for body_id in range(1, int(model.nbody)):
        mass = float(model.body_mass[body_id])
        inertia_diag = np.asarray(model.body_inertia[body_id], dtype=np.float64)
        name = mujoco.mj_id2name(model, mujoco.mjtObj.mjOBJ_BODY, body_id) or f"body{body_id}"
        if mass <= 0.0:
            logger.debug("skipping massless body '%s'", name)
            continue

        if share_identical:
            sig = (round(mass, decimals), *np.round(inertia_diag, decimals).tolist())
            handle = seen.get(sig)
            if handle is None:
                handle = pool.create(mass, inertia_diag)
                seen[sig] = handle
            blocks[name] = VariableBlock.shared(pool, handle, name=name)
        else:
            blocks[name] = VariableBlock.body(mass, inertia_diag, name=name)

    logger.debug(
        "[mbsolver.mjcf] %d bodies -> %d blocks (%d shared mass entries)",
        int(model.nbody) - 1, len(blocks), len(pool) if share_identical else 0,
    )
    return blocks, pool
