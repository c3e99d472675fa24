"""Default pipeline navigation: enabled steps in ascending ``execution_order``."""

from __future__ import annotations

from typing import Any

from taskline.models.pipeline import ResultPacket


class ExecutionOrderNavigator:
    """IPipelineNavigator over a ``{step_id: step_config}`` snapshot."""

    @staticmethod
    def _ordered(flow_config: dict[str, Any]) -> list[dict[str, Any]]:
        steps = [cfg for cfg in flow_config.values() if cfg.get("enabled", True)]
        return sorted(steps, key=lambda cfg: (cfg.get("execution_order", 0), cfg.get("step_id", "")))

    def first_step(self, flow_config: dict[str, Any]) -> str | None:
        ordered = self._ordered(flow_config)
        return ordered[0]["step_id"] if ordered else None

    def next_step(
        self, flow_config: dict[str, Any], current_step_id: str, packets: list[ResultPacket]
    ) -> str | None:
        current = flow_config.get(current_step_id)
        if current is None:
            return None
        key = (current.get("execution_order", 0), current_step_id)
        for cfg in self._ordered(flow_config):
            if (cfg.get("execution_order", 0), cfg.get("step_id", "")) > key:
                return cfg["step_id"]
        return None
