import logging
from collections import OrderedDict
from typing import Dict, List, Mapping

from combat_analysis.errors import (
    CyclicDependencyError,
    DuplicateModuleError,
    UnresolvedDependencyError,
)

logger = logging.getLogger(__name__)


class ModuleSpec:
    """One registry entry: how to build a module and what it needs first.

    ``dependencies`` maps a constructor keyword to the registry key of the
    module injected under it. A plain iterable of keys uses each key as
    its own keyword.
    """

    def __init__(self, constructor, config=None, dependencies=None):
        self.constructor = constructor
        self.config = dict(config or {})
        if dependencies is None:
            dependencies = {}
        elif not isinstance(dependencies, Mapping):
            dependencies = {key: key for key in dependencies}
        self.dependencies = dict(dependencies)

    @property
    def dependency_keys(self) -> List[str]:
        # keep declaration order while dropping repeats
        return list(dict.fromkeys(self.dependencies.values()))

    def with_config(self, **config):
        return ModuleSpec(
            self.constructor, {**self.config, **config}, self.dependencies
        )

    def __repr__(self):
        return f"ModuleSpec({self.constructor.__name__}, deps={self.dependency_keys})"


def _as_registry(registry) -> Dict[str, ModuleSpec]:
    if isinstance(registry, Mapping):
        items = registry.items()
    else:
        items = registry

    ordered = OrderedDict()
    for key, spec in items:
        if key in ordered:
            raise DuplicateModuleError(key)
        if not isinstance(spec, ModuleSpec):
            spec = ModuleSpec(spec)
        ordered[key] = spec
    return ordered


VISITING = 1
VISITED = 2


def resolve_order(registry) -> List[str]:
    """Topological construction order, dependencies first.

    Depth first in declaration order, so independent modules keep the order
    they were registered in.
    """
    registry = _as_registry(registry)
    marks = {}
    order = []

    def visit(key, path, required_by):
        mark = marks.get(key)
        if mark == VISITED:
            return
        if mark == VISITING:
            raise CyclicDependencyError(path[path.index(key):] + [key])
        if key not in registry:
            raise UnresolvedDependencyError(key, required_by)

        marks[key] = VISITING
        path.append(key)
        for dependency in registry[key].dependency_keys:
            visit(dependency, path, key)
        path.pop()
        marks[key] = VISITED
        order.append(key)

    for key in registry:
        visit(key, [], None)

    return order


class ModuleGraph:
    def __init__(self, modules):
        self._modules = OrderedDict(modules)

    @property
    def order(self):
        return list(self._modules)

    def __getitem__(self, key):
        return self._modules[key]

    def __contains__(self, key):
        return key in self._modules

    def __iter__(self):
        return iter(self._modules.values())

    def __len__(self):
        return len(self._modules)

    def get(self, key, default=None):
        return self._modules.get(key, default)

    @property
    def active_modules(self):
        return [module for module in self._modules.values() if module.active]


def build_modules(registry, context) -> ModuleGraph:
    registry = _as_registry(registry)
    # resolve everything up front, nothing is built for a broken registry
    order = resolve_order(registry)

    modules = OrderedDict()
    for key in order:
        spec = registry[key]
        dependencies = {
            keyword: modules[dependency_key]
            for keyword, dependency_key in spec.dependencies.items()
        }
        module = spec.constructor(context, **dependencies, **spec.config)
        module.key = key
        modules[key] = module

        if not module.active:
            logger.debug("Module %s is inactive for this run", key)

    return ModuleGraph(modules)
