"""Store diagnostics returned by ``GET /api/health/store``."""

from __future__ import annotations

from pydantic import BaseModel


class StoreCheck(BaseModel):
    """Row count for one store query, or the error that prevented it."""

    count: int | None = None
    error: str | None = None


class StoreDiagnostics(BaseModel):
    store: str  # "rest" | "memory"
    checks: dict[str, StoreCheck]

    @property
    def healthy(self) -> bool:
        return all(check.error is None for check in self.checks.values())
