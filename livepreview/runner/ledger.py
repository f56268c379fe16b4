"""Ordered, keyed log of execution steps."""

import time

from ..types import ExecutionStep, StepStatus


class StepLedger:
    """
    Append/update log of named steps.

    Order is first-occurrence order of keys. Re-adding a key replaces the entry
    in place, so a retried operation does not grow the ledger.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._steps: dict[str, ExecutionStep] = {}

    def _stamp(self, key: str) -> float:
        now = self._clock()
        previous = self._steps.get(key)
        if previous is not None and now < previous.timestamp:
            return previous.timestamp
        return now

    def add_or_update(
        self,
        key: str,
        name: str,
        status: StepStatus,
        output: str | None = None,
    ) -> ExecutionStep:
        step = ExecutionStep(
            key=key,
            name=name,
            status=status,
            output=output,
            timestamp=self._stamp(key),
        )
        # dict assignment to an existing key keeps its insertion position
        self._steps[key] = step
        return step

    def transition(
        self,
        key: str,
        status: StepStatus,
        output: str | None = None,
    ) -> ExecutionStep | None:
        """Update an existing step. Unknown keys are ignored."""
        current = self._steps.get(key)
        if current is None:
            return None

        update: dict = {"status": status, "timestamp": self._stamp(key)}
        if output is not None:
            update["output"] = output
        step = current.model_copy(update=update)
        self._steps[key] = step
        return step

    def get(self, key: str) -> ExecutionStep | None:
        return self._steps.get(key)

    def steps(self) -> list[ExecutionStep]:
        return list(self._steps.values())

    def any(self, prefix: str, status: StepStatus) -> bool:
        """True if any step whose key starts with prefix has the given status."""
        return any(
            step.key.startswith(prefix) and step.status == status
            for step in self._steps.values()
        )

    def __len__(self) -> int:
        return len(self._steps)
