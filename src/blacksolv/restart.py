import logging
import typing

import attrs
import numpy as np

from blacksolv.constants import c
from blacksolv.errors import DeserializationError

logger = logging.getLogger(__name__)

__all__ = ["ExtraData", "load_extra_data", "extra_data_to_restart"]


@attrs.frozen
class ExtraData:
    """Solver data carried between runs in a restart."""

    suggested_step: float = attrs.field(
        factory=lambda: float(c.DEFAULT_SUGGESTED_STEP), converter=float
    )
    """Suggested size of the next time step (s). Negative when unset."""


def load_extra_data(
    restart_values: typing.Mapping[str, typing.Any], key: typing.Optional[str] = None
) -> ExtraData:
    """
    Read the solver extra data from a restart.

    The extra data is a single-value array stored under `key` (the
    `RESTART_EXTRA_KEY` constant by default). A missing entry is not an
    error: a warning is logged and the defaults are used.

    :param restart_values: Named restart arrays.
    :param key: Name of the extra data array.
    :return: `ExtraData`
    :raises DeserializationError: If the entry exists but does not hold exactly one value.
    """
    key = key if key is not None else c.RESTART_EXTRA_KEY
    if key not in restart_values:
        extra = ExtraData()
        logger.warning(
            f"Restart has no {key!r} entry, using suggested step {extra.suggested_step:g}"
        )
        return extra

    values = np.asarray(restart_values[key], dtype=np.float64).ravel()
    if values.size != 1:
        raise DeserializationError(
            f"Restart entry {key!r} must hold exactly one value, got {values.size}"
        )
    return ExtraData(suggested_step=values[0])


def extra_data_to_restart(
    extra: ExtraData, key: typing.Optional[str] = None
) -> typing.Dict[str, np.ndarray]:
    """Named restart arrays holding `extra`, the inverse of `load_extra_data`."""
    key = key if key is not None else c.RESTART_EXTRA_KEY
    return {key: np.array([extra.suggested_step], dtype=np.float64)}
