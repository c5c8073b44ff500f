"""Pydantic v2 configuration for the kinetic particle push.

Holds the handful of run parameters the push needs: time step, parallel
width (blocks per mesh), bounce cap, domain orientation, worker count and
the set of particle ids to trace. Reading these from an input deck is the
caller's job; JSON round trip is provided for convenience.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from .mesh import DomainType


class PushConfig(BaseModel):
    """Kinetic push parameters."""

    dt: float = Field(..., gt=0, description="Simulation time step [s]")
    num_blocks: int = Field(4, ge=1, description="Particle blocks per mesh (parallel width)")
    max_bounces: int = Field(10, ge=1, description="Maximum surface/edge bounces per particle per step")
    domain_type: DomainType = Field(DomainType.XY, description="Domain orientation: XY, RZ or ZR")
    max_workers: int = Field(1, ge=1, description="Worker threads (1 = run blocks inline)")
    trace_ids: frozenset[int] = Field(
        default_factory=frozenset,
        description="Particle ids whose bounces are reported to the tracer",
    )

    @model_validator(mode="after")
    def check_workers(self) -> PushConfig:
        if self.max_workers > self.num_blocks:
            raise ValueError(
                f"max_workers ({self.max_workers}) cannot exceed num_blocks ({self.num_blocks})"
            )
        return self

    def to_json(self, path: str | Path | None = None) -> str:
        """Serialize to JSON, optionally writing to *path*."""
        text = self.model_dump_json(indent=2)
        if path is not None:
            Path(path).write_text(text)
        return text

    @classmethod
    def from_json(cls, source: str | Path) -> PushConfig:
        """Load from a JSON file path or a JSON string."""
        if isinstance(source, Path) or (isinstance(source, str) and not source.lstrip().startswith("{")):
            source = Path(source).read_text()
        return cls.model_validate_json(source)
