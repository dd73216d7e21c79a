"""Declarative selector probes.

Each logical element on the portal (username field, submit button, modal,
next-page control...) is described in selectors.yaml as an ordered list of
(selector, wait policy) pairs. A ProbeChain evaluates them in order and
returns the first hit.
"""

from dataclasses import dataclass
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_MS = 5000


@dataclass(frozen=True)
class Probe:
    selector: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    state: str = "visible"

    @classmethod
    def from_config(cls, raw: str | dict[str, Any]) -> "Probe":
        if isinstance(raw, str):
            return cls(selector=raw)
        return cls(
            selector=raw["selector"],
            timeout_ms=int(raw.get("timeout_ms", DEFAULT_TIMEOUT_MS)),
            state=raw.get("state", "visible"),
        )


class ProbeChain:
    """Prioritized list of probes for one logical element."""

    def __init__(self, name: str, probes: list[Probe]) -> None:
        if not probes:
            raise ValueError(f"Probe chain '{name}' is empty")
        self.name = name
        self.probes = probes

    @classmethod
    def from_config(cls, name: str, raw: list[str | dict[str, Any]]) -> "ProbeChain":
        return cls(name, [Probe.from_config(item) for item in raw])

    def __iter__(self):
        return iter(self.probes)

    def __len__(self) -> int:
        return len(self.probes)

    @property
    def selectors(self) -> list[str]:
        return [probe.selector for probe in self.probes]

    async def first(self, scope: Any, *, timeout_ms: int | None = None) -> Any | None:
        """Return the element matched by the first probe that resolves.

        Args:
            scope: PageSurface to probe.
            timeout_ms: Overrides every probe's own timeout when given.
        """
        for probe in self.probes:
            element = await scope.wait_for(
                probe.selector,
                timeout_ms=timeout_ms if timeout_ms is not None else probe.timeout_ms,
                state=probe.state,
            )
            if element is not None:
                logger.debug("probe_matched", element=self.name, selector=probe.selector)
                return element

        logger.debug("probe_chain_exhausted", element=self.name)
        return None

    async def any_match(self, scope: Any, *, timeout_ms: int | None = None) -> Any | None:
        """Return an element matching any probe, waiting once.

        The selectors are joined into one CSS selector list and waited on
        with the longest probe timeout and the first probe's state. Only for
        chains of plain CSS selectors.
        """
        timeout = (
            timeout_ms
            if timeout_ms is not None
            else max(probe.timeout_ms for probe in self.probes)
        )
        element = await scope.wait_for(
            ", ".join(self.selectors), timeout_ms=timeout, state=self.probes[0].state
        )
        if element is not None:
            logger.debug("probe_list_matched", element=self.name)
        return element

    async def frame(self, scope: Any) -> Any | None:
        """Return a surface scoped to the first iframe probe that resolves."""
        for probe in self.probes:
            frame = await scope.frame(
                probe.selector, timeout_ms=probe.timeout_ms, state=probe.state
            )
            if frame is not None:
                logger.debug("frame_probe_matched", element=self.name, selector=probe.selector)
                return frame
        return None


def build_chains(section: dict[str, Any], names: tuple[str, ...]) -> dict[str, ProbeChain]:
    """Build the named probe chains from a selectors.yaml section.

    Raises:
        KeyError: If a required chain is missing from the section.
    """
    return {name: ProbeChain.from_config(name, section[name]) for name in names}
