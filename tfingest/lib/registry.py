"""Registry of resolved backends.

The registry is the single answer to "which state are we looking at right
now". It is built once, after every declared backend has resolved, and is
read-only afterwards: ``select`` returns a new view sharing the same backend
tuple rather than changing the registry.
"""

from __future__ import annotations

import functools
import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from tfingest.lib.backends import BackendDeclaration, ResolvedBackend, resolve
from tfingest.lib.backends.s3 import SessionFactory
from tfingest.lib.errors import ConfigError, TerraformIngestError

logger = logging.getLogger(__name__)

__all__ = ["BackendRegistry"]

Resolver = Callable[[BackendDeclaration], ResolvedBackend]


def _duplicates(names: Iterable[str]) -> List[str]:
    seen: set = set()
    dupes: List[str] = []
    for name in names:
        if name in seen and name not in dupes:
            dupes.append(name)
        seen.add(name)
    return dupes


class BackendRegistry:
    """Resolved backends in declaration order, with an optional pinned one.

    ``current()`` returns the pinned backend when there is one, and
    otherwise the first declared backend, so runs are reproducible.

    Example:
        >>> registry = BackendRegistry([dev, prod])
        >>> registry.current().name
        'dev'
        >>> registry.select("prod").current().name
        'prod'
    """

    def __init__(
        self,
        backends: Sequence[ResolvedBackend] = (),
        *,
        current: Optional[str] = None,
    ) -> None:
        backends = tuple(backends)
        dupes = _duplicates(b.name for b in backends)
        if dupes:
            raise ConfigError(
                f"duplicate backend name(s): {', '.join(dupes)}",
                backend=dupes[0],
                field="name",
            )
        self._backends: Tuple[ResolvedBackend, ...] = backends
        self._by_name: Dict[str, ResolvedBackend] = {b.name: b for b in backends}
        if current is not None and current not in self._by_name:
            raise ConfigError(
                f"unknown backend '{current}'",
                backend=current,
                details={"known_backends": ", ".join(self._by_name) or "(none)"},
            )
        self._current = current

    @classmethod
    def _view(cls, parent: "BackendRegistry", current: str) -> "BackendRegistry":
        view = cls.__new__(cls)
        view._backends = parent._backends
        view._by_name = parent._by_name
        view._current = current
        return view

    @classmethod
    def from_declarations(
        cls,
        declarations: Sequence[BackendDeclaration],
        *,
        resolver: Optional[Resolver] = None,
        session_factory: Optional[SessionFactory] = None,
        timeout: Optional[float] = None,
    ) -> "BackendRegistry":
        """Resolve every declaration and build a registry.

        Duplicate names are rejected before any state is fetched. The first
        resolution failure aborts the run; a partial registry is never
        returned.

        Args:
            declarations: Backends in declaration order
            resolver: Resolution function; defaults to :func:`resolve`
            session_factory: boto3 Session factory passed to the default resolver
            timeout: Connect/read timeout in seconds passed to the default resolver

        Raises:
            ConfigError: Duplicate backend names, or session_factory/timeout
                given together with a custom resolver
            ResolutionError: A backend failed to resolve
        """
        declarations = list(declarations)
        dupes = _duplicates(d.name for d in declarations)
        if dupes:
            raise ConfigError(
                f"duplicate backend name(s): {', '.join(dupes)}",
                backend=dupes[0],
                field="name",
            )

        if resolver is None:
            resolver = functools.partial(
                resolve, session_factory=session_factory, timeout=timeout
            )
        elif session_factory is not None or timeout is not None:
            raise ConfigError(
                "session_factory and timeout apply to the default resolver only"
            )

        resolved: List[ResolvedBackend] = []
        for declaration in declarations:
            try:
                resolved.append(resolver(declaration))
            except TerraformIngestError as exc:
                logger.error(
                    "Cannot load backend %s: %s",
                    declaration.name,
                    exc.message,
                    extra={"backend": declaration.name, "error": exc.to_dict()},
                )
                raise

        logger.info("Loaded %d backend(s): %s", len(resolved), ", ".join(d.name for d in resolved))
        return cls(resolved)

    @property
    def names(self) -> List[str]:
        return [b.name for b in self._backends]

    @property
    def pinned(self) -> Optional[str]:
        """Name of the explicitly selected backend, if any."""
        return self._current

    def __len__(self) -> int:
        return len(self._backends)

    def __iter__(self) -> Iterator[ResolvedBackend]:
        return iter(self._backends)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> Optional[ResolvedBackend]:
        return self._by_name.get(name)

    def current(self) -> Optional[ResolvedBackend]:
        """The selected backend, else the first declared, else None."""
        if self._current is not None:
            return self._by_name[self._current]
        return self._backends[0] if self._backends else None

    def select(self, name: str) -> "BackendRegistry":
        """Return a view of this registry pinned to ``name``.

        Raises:
            ConfigError: No backend has that name
        """
        if name not in self._by_name:
            raise ConfigError(
                f"unknown backend '{name}'",
                backend=name,
                details={"known_backends": ", ".join(self._by_name) or "(none)"},
            )
        return self._view(self, name)

    def multiplex(self) -> List["BackendRegistry"]:
        """One pinned view per backend, in declaration order."""
        return [self._view(self, b.name) for b in self._backends]

    def __repr__(self) -> str:
        return f"BackendRegistry(backends={self.names!r}, current={self._current!r})"
