import typing

import attrs
import numpy as np
import scipy.sparse as sps

from blacksolv.ad import apply_matrix
from blacksolv.errors import ValidationError

__all__ = [
    "Grid",
    "build_cartesian_grid",
    "DiscreteOperators",
    "UpwindSelector",
    "RockCompressibility",
]


def _as_float_array(value) -> np.ndarray:
    return np.asarray(value, dtype=np.float64)


@attrs.frozen
class Grid:
    """
    Cell-centred grid topology and geometry consumed by the model.

    Faces are given by the pair of cells they connect. Boundary faces are not
    represented, the outer boundary is closed.
    """

    pore_volume: np.ndarray = attrs.field(converter=_as_float_array)
    """Pore volume of each cell (m³)."""
    depth: np.ndarray = attrs.field(converter=_as_float_array)
    """Depth of each cell centroid, positive downwards (m)."""
    neighbours: np.ndarray = attrs.field(converter=lambda v: np.asarray(v, dtype=np.intp).reshape(-1, 2))
    """Cell pairs (first, second) of each interior face."""
    transmissibility: np.ndarray = attrs.field(converter=_as_float_array)
    """Transmissibility of each interior face (m³)."""

    def __attrs_post_init__(self) -> None:
        nc = self.pore_volume.size
        if self.depth.size != nc:
            raise ValidationError(f"Expected {nc} cell depths, got {self.depth.size}")
        if np.any(self.pore_volume <= 0):
            raise ValidationError("Pore volumes must be positive")
        if self.transmissibility.size != self.neighbours.shape[0]:
            raise ValidationError("One transmissibility per face is required")
        if self.neighbours.size and (self.neighbours.min() < 0 or self.neighbours.max() >= nc):
            raise ValidationError("Face neighbours reference cells outside the grid")

    @property
    def num_cells(self) -> int:
        return self.pore_volume.size

    @property
    def num_faces(self) -> int:
        return self.neighbours.shape[0]


def build_cartesian_grid(
    cell_dimension: typing.Tuple[int, int, int],
    cell_size: typing.Tuple[float, float, float],
    permeability,
    porosity,
    top_depth: float = 0.0,
) -> Grid:
    """
    Build a logically Cartesian grid with two-point transmissibilities.

    Cells are ordered with x fastest, then y, then z (downwards).

    :param cell_dimension: Number of cells (nx, ny, nz).
    :param cell_size: Cell extent (dx, dy, dz) in metres.
    :param permeability: Isotropic permeability (m²), scalar or one value per cell.
    :param porosity: Porosity, scalar or one value per cell.
    :param top_depth: Depth of the top face of the grid (m).
    :return: The grid.
    """
    nx, ny, nz = cell_dimension
    dx, dy, dz = cell_size
    nc = nx * ny * nz
    if nc <= 0:
        raise ValidationError("Grid must contain at least one cell")

    permeability = np.broadcast_to(_as_float_array(permeability), (nc,)).copy()
    porosity = np.broadcast_to(_as_float_array(porosity), (nc,)).copy()
    if np.any(permeability <= 0) or np.any(porosity <= 0):
        raise ValidationError("Permeability and porosity must be positive")

    index = np.arange(nc).reshape(nz, ny, nx)
    k = np.arange(nz)
    depth = np.repeat(top_depth + (k + 0.5) * dz, nx * ny)

    neighbours = []
    transmissibility = []
    for axis, (length, area) in enumerate(
        ((dx, dy * dz), (dy, dx * dz), (dz, dx * dy))
    ):
        # axis 0 of `index` is z, so x is the last one
        array_axis = 2 - axis
        first = np.take(index, np.arange(index.shape[array_axis] - 1), axis=array_axis).ravel()
        second = np.take(index, np.arange(1, index.shape[array_axis]), axis=array_axis).ravel()
        if first.size == 0:
            continue
        half_first = permeability[first] * area / (0.5 * length)
        half_second = permeability[second] * area / (0.5 * length)
        neighbours.append(np.column_stack((first, second)))
        transmissibility.append(1.0 / (1.0 / half_first + 1.0 / half_second))

    if neighbours:
        neighbours_array = np.vstack(neighbours)
        transmissibility_array = np.concatenate(transmissibility)
    else:
        neighbours_array = np.zeros((0, 2), dtype=np.intp)
        transmissibility_array = np.zeros(0)
    return Grid(
        pore_volume=porosity * dx * dy * dz,
        depth=depth,
        neighbours=neighbours_array,
        transmissibility=transmissibility_array,
    )


class DiscreteOperators:
    """
    Two-point discrete operators on a grid.

    `ngrad` maps cell values to the negative gradient over each face
    (first cell minus second cell), `div` is its transpose, and `caver`
    averages the two cells of a face.
    """

    def __init__(self, grid: Grid) -> None:
        nf, nc = grid.num_faces, grid.num_cells
        faces = np.arange(nf)
        first, second = grid.neighbours[:, 0], grid.neighbours[:, 1]
        rows = np.concatenate((faces, faces))
        cols = np.concatenate((first, second))
        self.ngrad = sps.csr_matrix(
            (np.concatenate((np.ones(nf), -np.ones(nf))), (rows, cols)), shape=(nf, nc)
        )
        self.div = self.ngrad.transpose().tocsr()
        self.caver = sps.csr_matrix(
            (np.full(2 * nf, 0.5), (rows, cols)), shape=(nf, nc)
        )
        self.num_faces = nf
        self.num_cells = nc

    def gradient(self, x):
        return apply_matrix(self.ngrad, x)

    def divergence(self, x):
        return apply_matrix(self.div, x)

    def average(self, x):
        return apply_matrix(self.caver, x)


class UpwindSelector:
    """
    Picks the upstream cell value of each face from a face potential.

    Faces with positive potential (flow from first to second cell) take the
    first cell, all others the second cell.
    """

    def __init__(self, grid: Grid, potential) -> None:
        potential = np.asarray(potential)
        nf = grid.num_faces
        upstream = np.where(potential > 0.0, grid.neighbours[:, 0], grid.neighbours[:, 1])
        self.matrix = sps.csr_matrix(
            (np.ones(nf), (np.arange(nf), upstream)), shape=(nf, grid.num_cells)
        )

    def select(self, x):
        return apply_matrix(self.matrix, x)


@attrs.frozen
class RockCompressibility:
    """Pore volume and transmissibility multipliers as functions of pressure."""

    reference_pressure: float = 1e5
    """Pressure at which the multipliers equal one (Pa)."""
    compressibility: float = attrs.field(default=0.0, validator=attrs.validators.ge(0))
    """Rock compressibility (1/Pa)."""

    def pore_volume_multiplier(self, pressure):
        x = (pressure - self.reference_pressure) * self.compressibility
        return x * x * 0.5 + x + 1.0

    def transmissibility_multiplier(self, pressure):
        return pressure * 0.0 + 1.0
