import pytest

from speakerscribe.pipeline import ProgressEvent


class Recorder:
    """Progress observer collecting every event."""

    def __init__(self):
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    @property
    def stages(self) -> list[str]:
        """Stage transitions, collapsing repeated ticks of the same stage."""
        out = []
        for event in self.events:
            if not out or out[-1] != event.stage.value:
                out.append(event.stage.value)
        return out

    def count(self, stage: str) -> int:
        return sum(1 for e in self.events if e.stage.value == stage)


@pytest.fixture
def recorder():
    return Recorder()
