"""Fee and reserve schedule as last reported by the network."""

import math
from dataclasses import dataclass

from rippled_remote.constants import (
    DEFAULT_FEE_BASE,
    DEFAULT_FEE_CUSHION,
    DEFAULT_FEE_REF,
    DEFAULT_LOAD_BASE,
    DEFAULT_LOAD_FACTOR,
)
from rippled_remote.errors import ConfigurationError


@dataclass
class FeeSchedule:
    """Fee/load/reserve values tracked from subscribe, ledgerClosed and serverStatus.

    All fee and reserve values are in drops. ``fee_cushion`` is a local safety
    margin in case fees rise before a transaction reaches the network.
    """

    load_base: int = DEFAULT_LOAD_BASE
    load_factor: int = DEFAULT_LOAD_FACTOR
    fee_base: int = DEFAULT_FEE_BASE
    fee_ref: int = DEFAULT_FEE_REF
    reserve_base: int | None = None
    reserve_inc: int | None = None
    fee_cushion: float = DEFAULT_FEE_CUSHION

    def update(self, message: dict) -> bool:
        """Take whichever fee fields ``message`` carries. Returns True if load changed."""
        before = (self.load_base, self.load_factor)
        for field in ("load_base", "load_factor", "fee_base", "fee_ref", "reserve_base", "reserve_inc"):
            value = message.get(field)
            if value is not None:
                setattr(self, field, int(value))
        return (self.load_base, self.load_factor) != before

    def fee_unit(self) -> float:
        """Recommended drops per fee unit, with load and cushion applied."""
        unit = self.fee_base / self.fee_ref
        unit *= self.load_factor / self.load_base
        unit *= self.fee_cushion
        return unit

    def fee_for(self, units: int) -> int:
        return math.ceil(units * self.fee_unit())

    def reserve(self, owner_count: int = 0) -> int:
        if owner_count < 0:
            raise ConfigurationError("invalidOwnerCount", "Owner count must not be negative.")
        if self.reserve_base is None or self.reserve_inc is None:
            raise ConfigurationError("reserveUnknown", "Reserve not yet reported by the network.")
        return self.reserve_base + self.reserve_inc * owner_count

    def as_dict(self) -> dict:
        return {
            "load_base": self.load_base,
            "load_factor": self.load_factor,
            "fee_base": self.fee_base,
            "fee_ref": self.fee_ref,
            "reserve_base": self.reserve_base,
            "reserve_inc": self.reserve_inc,
            "fee_unit": self.fee_unit(),
        }
