"""
Parameters, constants and configuration for TinyProto.

This module holds the per-dimension descriptors supplied when a clusterer
is created, the configuration that controls prototype synthesis, and the
numeric constants shared by the statistical routines.
"""

import enum
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Union

from tiny_proto.core.base import SerializableModel

# Variance used in place of 0.0 when all samples in a prototype are
# identical. Corresponds to a minimum standard deviation of 0.002, or 0.2%
# of full scale for a parameter whose range is 1.0.
MIN_VARIANCE = 0.000004

# Absolute minimum number of samples a cluster must hold before its
# distribution is analyzed.
MIN_SAMPLES_NEEDED = 1

# Size of the table mapping normalized samples to histogram buckets, and
# the number of standard deviations of a normal distribution it covers on
# either side of the mean. The table size must be even.
BUCKET_TABLE_SIZE = 1024
NORMAL_EXTENT = 3.0

# Lookup tables for the number of histogram buckets to use for a given
# number of samples (Bendat & Piersol, Table 4.1).
MIN_BUCKETS = 5
MIN_SAMPLES_PER_BUCKET = 5
MIN_SAMPLES = MIN_BUCKETS * MIN_SAMPLES_PER_BUCKET
MAX_BUCKETS = 39
COUNT_TABLE = (MIN_SAMPLES, 200, 400, 600, 800, 1000, 1500, 2000)
BUCKETS_TABLE = (MIN_BUCKETS, 16, 20, 24, 27, 30, 35, MAX_BUCKETS)

# Root finding parameters for chi-squared thresholds.
CHI_ACCURACY = 0.01
MIN_ALPHA = 1e-200
MAX_SOLVER_ITERATIONS = 1000


class ProtoStyle(enum.Enum):
    """Shape of the prototypes the synthesizer tries to fit."""

    SPHERICAL = "spherical"
    ELLIPTICAL = "elliptical"
    MIXED = "mixed"
    AUTOMATIC = "automatic"


class Distribution(enum.Enum):
    """Probability distribution families used for a single dimension."""

    NORMAL = "normal"
    UNIFORM = "uniform"
    RANDOM = "random"

    @property
    def degree_offset(self) -> int:
        """Buckets subtracted from the bucket count to get degrees of freedom."""
        return 1 if self is Distribution.RANDOM else 3


@dataclass(frozen=True)
class DimensionDescriptor:
    """
    Description of one dimension of the feature space.

    Attributes:
        min: Smallest value the dimension can take.
        max: Largest value the dimension can take.
        circular: True if values wrap around from max back to min.
        non_essential: True if the dimension is skipped by the
                       independence and distribution tests.
        range: max - min.
        half_range: range / 2.
        mid_range: (max + min) / 2.
    """

    min: float
    max: float
    circular: bool = False
    non_essential: bool = False
    range: float = field(init=False)
    half_range: float = field(init=False)
    mid_range: float = field(init=False)

    def __post_init__(self) -> None:
        if not (math.isfinite(self.min) and math.isfinite(self.max)):
            raise ValueError("Dimension bounds must be finite")
        if self.max <= self.min:
            raise ValueError(
                f"Dimension max ({self.max}) must be greater than min ({self.min})"
            )
        span = self.max - self.min
        object.__setattr__(self, "range", span)
        object.__setattr__(self, "half_range", span / 2)
        object.__setattr__(self, "mid_range", (self.max + self.min) / 2)

    def wrap_offset(self, offset: float) -> float:
        """
        Wrap an offset into [-half_range, half_range] on circular dimensions.

        Args:
            offset: Difference between two values in this dimension.

        Returns:
            The shortest signed offset (unchanged for linear dimensions).
        """
        if self.circular:
            if offset > self.half_range:
                offset -= self.range
            if offset < -self.half_range:
                offset += self.range
        return offset

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min": self.min,
            "max": self.max,
            "circular": self.circular,
            "non_essential": self.non_essential,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DimensionDescriptor":
        return cls(
            min=data["min"],
            max=data["max"],
            circular=data.get("circular", False),
            non_essential=data.get("non_essential", False),
        )


@dataclass
class ClusterConfig(SerializableModel):
    """
    Parameters controlling prototype synthesis.

    Attributes:
        proto_style: Shape of the prototypes to generate.
        min_samples_fraction: Minimum cluster size, as a fraction of the
                              number of characters, below which a
                              prototype is generated without testing and
                              marked insignificant.
        max_illegal_fraction: Maximum fraction of characters allowed to
                              contribute more than one sample to a cluster.
        independence_bound: Maximum correlation coefficient allowed between
                            two essential dimensions.
        confidence: Probability of a Type I error (alpha) used for the
                    chi-squared goodness of fit tests.
    """

    proto_style: Union[ProtoStyle, str] = ProtoStyle.ELLIPTICAL
    min_samples_fraction: float = 0.0
    max_illegal_fraction: float = 0.05
    independence_bound: float = 0.5
    confidence: float = 1e-6

    def __post_init__(self) -> None:
        if isinstance(self.proto_style, str):
            try:
                self.proto_style = ProtoStyle(self.proto_style.lower())
            except ValueError:
                raise ValueError(f"Unknown prototype style: {self.proto_style}")
        elif not isinstance(self.proto_style, ProtoStyle):
            raise TypeError("proto_style must be a ProtoStyle or a string")

        if not (0.0 <= self.min_samples_fraction <= 1.0):
            raise ValueError("min_samples_fraction must be between 0 and 1")
        if not (0.0 <= self.max_illegal_fraction <= 1.0):
            raise ValueError("max_illegal_fraction must be between 0 and 1")
        if not (0.0 <= self.independence_bound <= 1.0):
            raise ValueError("independence_bound must be between 0 and 1")
        if not (0.0 < self.confidence <= 1.0):
            raise ValueError("confidence must be in the interval (0, 1]")

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update(
            {
                "proto_style": self.proto_style.value,
                "min_samples_fraction": self.min_samples_fraction,
                "max_illegal_fraction": self.max_illegal_fraction,
                "independence_bound": self.independence_bound,
                "confidence": self.confidence,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterConfig":
        return cls(
            proto_style=data["proto_style"],
            min_samples_fraction=data["min_samples_fraction"],
            max_illegal_fraction=data["max_illegal_fraction"],
            independence_bound=data["independence_bound"],
            confidence=data["confidence"],
        )
