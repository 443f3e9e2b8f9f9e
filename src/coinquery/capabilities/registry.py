"""Capability registry: the closed vocabulary generated programs may call.

A capability is a named, read-only async data-access operation. The registry
is built once at startup and never changes afterwards; the sandbox receives
a fresh copy of its bindings for every program run, so nothing a program
does to its namespace can reach the registry or another run.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Iterator, Mapping


CapabilityFn = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class Capability:
    """A named async operation exposed to generated programs."""

    name: str
    invoke: CapabilityFn
    signature: str = "()"
    summary: str = ""
    group: str = "General"
    namespace: str | None = None

    @property
    def qualified_name(self) -> str:
        """Name as written in a program (``kadena.getBlock`` or ``price``)."""
        return f"{self.namespace}.{self.name}" if self.namespace else self.name

    async def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return await self.invoke(*args, **kwargs)


class CapabilityNamespace:
    """Read-only attribute view over a group of capabilities (e.g. ``kadena``)."""

    __slots__ = ("_namespace", "_members")

    def __init__(self, namespace: str, members: Mapping[str, CapabilityFn]):
        object.__setattr__(self, "_namespace", namespace)
        object.__setattr__(self, "_members", MappingProxyType(dict(members)))

    def __getattr__(self, item: str) -> CapabilityFn:
        try:
            return self._members[item]
        except KeyError:
            raise AttributeError(f"'{self._namespace}' has no capability '{item}'") from None

    def __setattr__(self, key: str, value: Any) -> None:
        raise AttributeError(f"'{self._namespace}' is read-only")

    def __delattr__(self, item: str) -> None:
        raise AttributeError(f"'{self._namespace}' is read-only")

    def __dir__(self) -> list[str]:
        return sorted(self._members)

    def __repr__(self) -> str:
        return f"<capabilities {self._namespace}: {', '.join(sorted(self._members))}>"


def _freeze(value: Any) -> Any:
    """Return a read-only copy of a constant value."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(_freeze(item) for item in value)
    return value


class CapabilityRegistry:
    """Immutable, process-wide table of capabilities and read-only constants.

    Usage:
        registry = CapabilityRegistry([Capability("price", fetch_price)], constants={"TIME_PERIODS": {...}})
        bindings = registry.bindings()
    """

    def __init__(
        self,
        capabilities: Iterable[Capability],
        constants: Mapping[str, Any] | None = None,
    ):
        table: dict[str, Capability] = {}
        for capability in capabilities:
            key = capability.qualified_name
            if key in table:
                raise ValueError(f"Duplicate capability: {key}")
            table[key] = capability
        self._capabilities = MappingProxyType(table)

        frozen = {name: _freeze(value) for name, value in (constants or {}).items()}
        clashes = set(frozen) & self.top_level_names()
        if clashes:
            raise ValueError(f"Constants shadow capabilities: {', '.join(sorted(clashes))}")
        self._constants = MappingProxyType(frozen)

    def __contains__(self, qualified_name: object) -> bool:
        return qualified_name in self._capabilities

    def __getitem__(self, qualified_name: str) -> Capability:
        return self._capabilities[qualified_name]

    def __iter__(self) -> Iterator[Capability]:
        return iter(self._capabilities.values())

    def __len__(self) -> int:
        return len(self._capabilities)

    @property
    def constants(self) -> Mapping[str, Any]:
        return self._constants

    def get(self, qualified_name: str) -> Capability | None:
        return self._capabilities.get(qualified_name)

    def top_level_names(self) -> set[str]:
        """Names a program can reference directly: bare capabilities and namespaces."""
        return {capability.namespace or capability.name for capability in self}

    def namespace_members(self) -> dict[str, set[str]]:
        members: dict[str, set[str]] = {}
        for capability in self:
            if capability.namespace:
                members.setdefault(capability.namespace, set()).add(capability.name)
        return members

    def groups(self) -> dict[str, list[Capability]]:
        grouped: dict[str, list[Capability]] = {}
        for capability in self:
            grouped.setdefault(capability.group, []).append(capability)
        return grouped

    def bindings(self) -> dict[str, Any]:
        """Build a fresh namespace dict holding exactly the registry's surface."""
        bound: dict[str, Any] = {}
        namespaces: dict[str, dict[str, CapabilityFn]] = {}
        for capability in self:
            if capability.namespace:
                namespaces.setdefault(capability.namespace, {})[capability.name] = capability.invoke
            else:
                bound[capability.name] = capability.invoke
        for namespace, members in namespaces.items():
            bound[namespace] = CapabilityNamespace(namespace, members)
        bound.update(self._constants)
        return bound

    def describe(self) -> str:
        """Render the catalog as prompt text, one line per capability."""
        lines: list[str] = []
        for group, capabilities in self.groups().items():
            lines.append(f"- {group}:")
            for capability in capabilities:
                line = f"  - {capability.qualified_name}{capability.signature}"
                if capability.summary:
                    line += f" - {capability.summary}"
                lines.append(line)
        if self._constants:
            lines.append("- Read-only constants:")
            for name in self._constants:
                lines.append(f"  - {name}")
        return "\n".join(lines)
