"""
Piecewise-linear finite element operators on triangle meshes (torch).

Every face stores the gradients of its three hat functions. The stiffness
matrix, the face gradient of a vertex field and the integrated divergence of a
face field are all contractions of those gradients with the face areas. The
stiffness ``L_ij = sum_f A_f <grad phi_i, grad phi_j>`` is the positive
semi-definite cotangent Laplacian.
"""

from __future__ import annotations

from typing import NamedTuple, Tuple

import numpy as np
import scipy.sparse as sp
import torch
from torch import Tensor

EPS = 1.0e-12


class FaceGeometry(NamedTuple):
    area: Tensor  # (nF,)
    normal: Tensor  # (nF, 3), unit length
    grads: Tensor  # (nF, 3, 3); grads[f, c] is the gradient of the hat at corner c


def safe_norm(x: Tensor, *, dim: int = -1, keepdim: bool = True, eps: float = EPS) -> Tensor:
    return torch.linalg.norm(x, dim=dim, keepdim=keepdim).clamp_min(eps)


def face_geometry(V: Tensor, F: Tensor) -> FaceGeometry:
    corners = V[F]  # (nF, 3, 3)
    n = torch.cross(corners[:, 1] - corners[:, 0], corners[:, 2] - corners[:, 0], dim=1)
    double_area = safe_norm(n, dim=1, keepdim=False)
    normal = n / double_area[:, None]

    # Edge opposite corner c runs from corner c + 1 to corner c + 2.
    opposite = torch.roll(corners, shifts=-2, dims=1) - torch.roll(corners, shifts=-1, dims=1)
    grads = torch.cross(normal[:, None, :].expand_as(opposite), opposite, dim=2) / double_area[:, None, None]
    return FaceGeometry(0.5 * double_area, normal, grads)


def lumped_mass(n_vertices: int, F: Tensor, area: Tensor) -> Tensor:
    """Barycentric lumping: every corner receives a third of its face."""

    mass = torch.zeros(n_vertices, dtype=area.dtype, device=area.device)
    mass.index_add_(0, F.reshape(-1), (area / 3.0).repeat_interleave(3))
    return mass


def stiffness_coo(F: Tensor, geom: FaceGeometry) -> Tuple[Tensor, Tensor, Tensor]:
    """
    Per-face 3x3 stiffness blocks as COO triplets ``(row, col, val)``.

    Entries shared by neighbouring faces are repeated; the assembler sums them.
    """

    local = geom.area[:, None, None] * torch.bmm(geom.grads, geom.grads.transpose(1, 2))
    row = F[:, :, None].expand(-1, 3, 3)
    col = F[:, None, :].expand(-1, 3, 3)
    return row.reshape(-1), col.reshape(-1), local.reshape(-1)


def coo_to_scipy(row: Tensor, col: Tensor, val: Tensor, n: int) -> sp.csr_matrix:
    """Assemble torch COO triplets into a host CSR matrix (duplicates summed)."""

    data = val.detach().cpu().numpy().astype(np.float64)
    ij = (row.detach().cpu().numpy(), col.detach().cpu().numpy())
    return sp.coo_matrix((data, ij), shape=(n, n)).tocsr()


def face_gradients(U: Tensor, F: Tensor, geom: FaceGeometry) -> Tensor:
    """Gradient of each column of the vertex field ``U: (nV, C)``, shape ``(nF, C, 3)``."""

    return torch.einsum("fcd,fck->fkd", geom.grads, U[F])


def unit_directions(grad: Tensor, *, eps: float = EPS) -> Tensor:
    """``-grad / |grad|`` per face and column; vanishing gradients stay zero."""

    return -grad / safe_norm(grad, dim=2, eps=eps)


def integrated_divergence(X: Tensor, F: Tensor, geom: FaceGeometry, n_vertices: int) -> Tensor:
    """
    ``b_i = sum_f A_f <X_f, grad phi_i>`` for a face field ``X: (nF, C, 3)``.

    Signed to pair with the positive semi-definite stiffness matrix.
    """

    per_corner = geom.area[:, None, None] * torch.einsum("fkd,fcd->fck", X, geom.grads)
    div = torch.zeros(n_vertices, X.shape[1], dtype=X.dtype, device=X.device)
    div.index_add_(0, F.reshape(-1), per_corner.reshape(-1, X.shape[1]))
    return div


__all__ = [
    "EPS",
    "FaceGeometry",
    "safe_norm",
    "face_geometry",
    "lumped_mass",
    "stiffness_coo",
    "coo_to_scipy",
    "face_gradients",
    "unit_directions",
    "integrated_divergence",
]
