"""
Structure_Truss - Geometrically Nonlinear 2D Truss
==================================================

Pin-jointed bars with a Green-Lagrange axial strain, a classic benchmark for
continuation methods (snap-through of shallow trusses):

    d   = (X2 - X1) + (u2 - u1)          current bar vector
    eps = (d.d - L0^2) / (2 L0^2)        Green-Lagrange strain
    N   = E A eps                        axial force

Bar internal force and tangent (4 DOFs [u1x, u1y, u2x, u2y]):

    p = (N / L0) [-d, d]
    k = (E A / L0^3) [[dd^T, -dd^T], [-dd^T, dd^T]] + (N / L0) [[I, -I], [-I, I]]

Each node has 2 DOFs: [ux, uy]. Boundary conditions remove DOFs; the
equilibrium problem seen by the continuation solver is expressed on the free
DOFs only:

    R(U_free, lambda) = P_r(U)[free] - lambda * P[free]

Typical Usage:
    >>> St = Structure_Truss()
    >>> St.add_bar([-1.0, 0.0], [0.0, 0.2], E=1.0, A=1.0)
    >>> St.add_bar([0.0, 0.2], [1.0, 0.0], E=1.0, A=1.0)
    >>> St.make_nodes()
    >>> St.fix_node([0, 2], [0, 1])
    >>> St.load_node(1, [1], -1.0)
    >>> arc = ArcLengthIterator(St, St.reference_force(), {'Length': 0.05})
"""

import warnings

import numpy as np
import scipy.sparse as sp  # Sparse Matrix Storage

from ArcRefine.Structures.Problem import EquilibriumProblem


class Bar2D:
    """Two-node bar with Green-Lagrange strain."""

    def __init__(self, N1, N2, E, A):
        self.N1 = np.asarray(N1, dtype=float)
        self.N2 = np.asarray(N2, dtype=float)
        self.E = float(E)
        self.A = float(A)
        self.L0 = float(np.linalg.norm(self.N2 - self.N1))
        if self.L0 == 0:
            raise ValueError("Bar has zero length")
        self.dofs = None

    def make_connect(self, node_ids, structure):
        self.dofs = np.concatenate([structure.get_dofs_from_node(n) for n in node_ids])

    def _state(self, u):
        d = (self.N2 - self.N1) + (u[2:4] - u[0:2])
        eps = (d @ d - self.L0 ** 2) / (2 * self.L0 ** 2)
        return d, eps

    def strain(self, u):
        return self._state(u)[1]

    def get_p_glob(self, u):
        d, eps = self._state(u)
        N = self.E * self.A * eps
        return (N / self.L0) * np.concatenate([-d, d])

    def get_k_glob(self, u):
        d, eps = self._state(u)
        N = self.E * self.A * eps
        k_mat = (self.E * self.A / self.L0 ** 3) * np.outer(d, d)
        k_geo = (N / self.L0) * np.eye(2)
        k = k_mat + k_geo
        return np.block([[k, -k], [-k, k]])


class Structure_Truss(EquilibriumProblem):
    """
    2D truss of Bar2D elements, usable directly as an equilibrium problem.

    Attributes
    ----------
    list_nodes : list
        Node coordinates as [x, y] arrays
    list_bars : list
        Bar2D elements
    nb_dofs : int
        Total number of DOFs (2 per node)
    P : ndarray
        Reference load vector (full DOF numbering)
    dof_fix, dof_free : ndarray
        Fixed and free DOF indices
    """
    DOF_PER_NODE = 2  # [ux, uy]

    def __init__(self):
        self.list_nodes = []
        self.list_bars = []
        self._bar_nodes = []

        self.nb_dofs = None
        self.P = None

        self.dof_fix = np.array([], dtype=int)
        self.dof_free = np.array([], dtype=int)

    # ==========================================================================
    # Node & Element Management
    # ==========================================================================

    def get_node_id(self, node, tol=1e-8):
        """Find node index by coordinates. Returns None if not found."""
        if isinstance(node, (int, np.integer)):
            return int(node)
        if not self.list_nodes:
            return None
        target = np.asarray(node, dtype=float).ravel()
        dist_sq = np.sum((np.array(self.list_nodes) - target) ** 2, axis=1)
        matches = np.nonzero(dist_sq <= tol ** 2)[0]
        return int(matches[0]) if matches.size > 0 else None

    def _add_node_if_new(self, node, tol=1e-8):
        target = np.asarray(node, dtype=float).ravel()
        if target.size != 2:
            raise ValueError("Invalid node coordinates")
        idx = self.get_node_id(target, tol=tol)
        if idx is not None:
            return idx
        self.list_nodes.append(target)
        return len(self.list_nodes) - 1

    def add_bar(self, N1, N2, E, A):
        """Add a bar between two points (nodes are merged by position). Returns its index."""
        self.list_bars.append(Bar2D(N1, N2, E, A))
        self._bar_nodes.append((self._add_node_if_new(N1), self._add_node_if_new(N2)))
        return len(self.list_bars) - 1

    def make_nodes(self):
        """Build the DOF system once all bars are defined."""
        self.nb_dofs = self.DOF_PER_NODE * len(self.list_nodes)
        for bar, nodes in zip(self.list_bars, self._bar_nodes):
            bar.make_connect(nodes, self)
        self.P = np.zeros(self.nb_dofs)
        self.dof_fix = np.array([], dtype=int)
        self.dof_free = np.arange(self.nb_dofs)

    # ==========================================================================
    # DOF Helpers
    # ==========================================================================

    def get_dofs_from_node(self, node_id):
        start = self.DOF_PER_NODE * node_id
        return np.arange(start, start + self.DOF_PER_NODE)

    def _global_dof(self, node_id, local_dof):
        return self.DOF_PER_NODE * int(node_id) + int(local_dof)

    def _resolve_targets(self, node_ids):
        if isinstance(node_ids, (int, np.integer)):
            yield int(node_ids)
        elif isinstance(node_ids, (list, tuple)):
            for nid in node_ids:
                yield int(nid)
        elif isinstance(node_ids, np.ndarray) and node_ids.size == 2:
            nid = self.get_node_id(node_ids)
            if nid is not None:
                yield nid
            else:
                warnings.warn("Node at coordinates not found.")
        else:
            warnings.warn("Invalid node identifier provided.")

    @staticmethod
    def _iter_dofs(dofs):
        if isinstance(dofs, (int, np.integer)):
            yield int(dofs)
        else:
            for d in dofs:
                yield int(d)

    # ==========================================================================
    # Loading & Boundary Conditions
    # ==========================================================================

    def _require_dofs(self):
        if self.nb_dofs is None:
            raise RuntimeError("Call make_nodes() before applying loads or supports")

    def load_node(self, node_ids, dofs, force):
        """Add a reference load component to node(s)."""
        self._require_dofs()
        for nid in self._resolve_targets(node_ids):
            for dof in self._iter_dofs(dofs):
                self.P[self._global_dof(nid, dof)] += force

    def add_nodal_load(self, node_id, force_vector):
        """Apply a force vector [fx, fy] to a node."""
        if len(force_vector) != self.DOF_PER_NODE:
            warnings.warn(f"Force vector len {len(force_vector)} mismatch with node DOFs {self.DOF_PER_NODE}")
            return
        for local_dof, val in enumerate(force_vector):
            if val != 0:
                self.load_node(node_id, local_dof, val)

    def fix_node(self, node_ids, dofs):
        """Fix DOFs on node(s)."""
        self._require_dofs()
        new_fixed = [self._global_dof(nid, dof)
                     for nid in self._resolve_targets(node_ids)
                     for dof in self._iter_dofs(dofs)]
        if new_fixed:
            self.dof_fix = np.unique(np.append(self.dof_fix, new_fixed)).astype(int)
            self.dof_free = np.setdiff1d(np.arange(self.nb_dofs), self.dof_fix)

    # ==========================================================================
    # Assembly
    # ==========================================================================

    def expand(self, U_free):
        """Full displacement vector from free-DOF values (fixed DOFs are zero)."""
        U = np.zeros(self.nb_dofs)
        U[self.dof_free] = U_free
        return U

    def reference_force(self):
        return self.P[self.dof_free].copy()

    def get_P_r(self, U):
        P_r = np.zeros(self.nb_dofs)
        for bar in self.list_bars:
            P_r[bar.dofs] += bar.get_p_glob(U[bar.dofs])
        return P_r

    def get_K_str(self, U):
        rows, cols, vals = [], [], []
        for bar in self.list_bars:
            k = bar.get_k_glob(U[bar.dofs])
            r, c = np.meshgrid(bar.dofs, bar.dofs, indexing='ij')
            rows.append(r.ravel())
            cols.append(c.ravel())
            vals.append(k.ravel())
        # Duplicate entries are summed on conversion
        return sp.coo_matrix(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
            shape=(self.nb_dofs, self.nb_dofs),
        ).tocsr()

    # ==========================================================================
    # Equilibrium Problem
    # ==========================================================================

    def residual(self, U, L, force):
        return self.get_P_r(self.expand(U))[self.dof_free] - L * np.asarray(force)

    def jacobian(self, U):
        K = self.get_K_str(self.expand(U))
        return K[self.dof_free][:, self.dof_free]
