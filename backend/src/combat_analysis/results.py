import logging
from collections.abc import Mapping
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Optional, Tuple

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer

from combat_analysis.errors import ModuleHandlerError, ResultAlreadySealedError

logger = logging.getLogger(__name__)


class Importance(str, Enum):
    MAJOR = "major"
    REGULAR = "regular"
    MINOR = "minor"


class ThresholdStyle(str, Enum):
    PERCENTAGE = "percentage"
    NUMBER = "number"
    SECONDS = "seconds"


class STATISTIC_ORDER:
    @staticmethod
    def CORE(position=0):
        return position

    @staticmethod
    def OPTIONAL(position=0):
        return 1000 + position

    @staticmethod
    def UNIMPORTANT(position=0):
        return 2000 + position


def format_threshold(value, style):
    if style == ThresholdStyle.PERCENTAGE:
        return f"{value * 100:.2f}%"
    if style == ThresholdStyle.SECONDS:
        return f"{value / 1000:.1f}s"
    return f"{value:,.0f}" if isinstance(value, (int, float)) else str(value)


def freeze(value):
    """Read-only copy of nested dicts / lists, mappings become mappingproxies"""
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(item) for item in value)
    return value


def thaw(value):
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, (tuple, frozenset)):
        return [thaw(item) for item in value]
    return value


# Output payloads are sealed with the result, they serialize back to plain JSON
Frozen = Annotated[Any, AfterValidator(freeze), PlainSerializer(thaw)]


def _frozen_mapping():
    return Field(default_factory=dict, validate_default=True)


class Suggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    module: str
    text: str
    importance: Importance = Importance.REGULAR
    icon: Optional[str] = None
    actual: Optional[str] = None
    recommended: Optional[str] = None


class StatisticOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    module: str
    label: str = ""
    value: Frozen = None
    position: int = STATISTIC_ORDER.OPTIONAL()
    icon: Optional[str] = None
    tooltip: Optional[str] = None
    details: Frozen = _frozen_mapping()
    available: bool = True
    error: Optional[str] = None


class TabOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    title: str
    url: str
    data: Frozen = _frozen_mapping()
    available: bool = True
    error: Optional[str] = None


class DegradedModule(BaseModel):
    model_config = ConfigDict(frozen=True)

    module: str
    error: str
    stage: str = "event"
    index: Optional[int] = None
    timestamp: Optional[int] = None


class Result(BaseModel):
    model_config = ConfigDict(frozen=True)

    suggestions: Tuple[Suggestion, ...] = ()
    statistics: Tuple[StatisticOutput, ...] = ()
    tabs: Tuple[TabOutput, ...] = ()
    degraded: Tuple[DegradedModule, ...] = ()
    metadata: Frozen = _frozen_mapping()

    def statistic(self, module) -> Optional[StatisticOutput]:
        for statistic in self.statistics:
            if statistic.module == module:
                return statistic
        return None

    def suggestions_for(self, module):
        return [s for s in self.suggestions if s.module == module]


class Thresholds:
    """Minor / average / major boundaries for a measured value.

    Use ``is_greater_than`` when a high actual value is bad (downtime) and
    ``is_less_than`` when a low one is (uptime).
    """

    def __init__(
        self,
        actual,
        is_greater_than=None,
        is_less_than=None,
        style=ThresholdStyle.PERCENTAGE,
    ):
        if (is_greater_than is None) == (is_less_than is None):
            raise ValueError("Thresholds need exactly one of is_greater_than/is_less_than")
        self.actual = actual
        self.is_greater_than = is_greater_than
        self.is_less_than = is_less_than
        self.style = style

    @property
    def _limits(self):
        return self.is_greater_than if self.is_greater_than is not None else self.is_less_than

    def _exceeds(self, limit):
        if self.is_greater_than is not None:
            return self.actual > limit
        return self.actual < limit

    @property
    def recommended(self):
        return self._limits["minor"]

    def importance(self) -> Optional[Importance]:
        limits = self._limits
        if "major" in limits and self._exceeds(limits["major"]):
            return Importance.MAJOR
        if "average" in limits and self._exceeds(limits["average"]):
            return Importance.REGULAR
        if self._exceeds(limits["minor"]):
            return Importance.MINOR
        return None

    def suggest(self, module, text, icon=None, actual=None, recommended=None):
        """Returns a one-item list when the actual value crosses minor, else []"""
        importance = self.importance()
        if importance is None:
            return []

        comparison = "<" if self.is_greater_than is not None else ">"
        if actual is None:
            actual = format_threshold(self.actual, self.style)
        if recommended is None:
            recommended = (
                f"{comparison}{format_threshold(self.recommended, self.style)} is recommended"
            )
        return [
            Suggestion(
                module=module,
                text=text,
                importance=importance,
                icon=icon,
                actual=actual,
                recommended=recommended,
            )
        ]


def _error_message(module):
    error = module.error
    if isinstance(error, ModuleHandlerError):
        return str(error.cause)
    return str(error)


class ResultsAggregator:
    """Collects the outputs of every active module into one sealed ``Result``"""

    def __init__(self, graph):
        self._graph = graph
        self._result = None

    @property
    def sealed(self):
        return self._result is not None

    def _degrade(self, module, stage, cause):
        error = ModuleHandlerError(module.key, cause, stage=stage)
        logger.warning("Degraded module %s: %s", module.key, error, exc_info=cause)
        module.degrade(error)

    def _collect_suggestions(self, module):
        if module.degraded:
            return []
        try:
            return list(module.suggestions() or [])
        except Exception as e:
            self._degrade(module, "suggestions", e)
            return []

    def _collect_statistic(self, module):
        if not module.produces("statistic"):
            return None
        if not module.degraded:
            try:
                return module.statistic()
            except Exception as e:
                self._degrade(module, "statistic", e)
        return StatisticOutput(
            module=module.key,
            label=module.key,
            available=False,
            error=_error_message(module),
        )

    def _collect_tab(self, module):
        if not module.produces("tab"):
            return None
        if not module.degraded:
            try:
                return module.tab()
            except Exception as e:
                self._degrade(module, "tab", e)
        return TabOutput(
            key=module.key,
            title=module.key,
            url=module.key,
            available=False,
            error=_error_message(module),
        )

    def seal(self, built_in_tabs=(), metadata=None) -> Result:
        if self.sealed:
            raise ResultAlreadySealedError()

        suggestions = []
        statistics = []
        tabs = []

        for module in self._graph.active_modules:
            suggestions.extend(self._collect_suggestions(module))

            statistic = self._collect_statistic(module)
            if statistic is not None:
                statistics.append(statistic)

            tab = self._collect_tab(module)
            if tab is not None:
                tabs.append(tab)

        tabs.extend(built_in_tabs)

        degraded = [
            DegradedModule(
                module=module.key,
                error=_error_message(module),
                stage=getattr(module.error, "stage", "event"),
                index=getattr(module.error, "index", None),
                timestamp=getattr(module.error, "timestamp", None),
            )
            for module in self._graph.active_modules
            if module.degraded
        ]

        self._result = Result(
            suggestions=tuple(suggestions),
            statistics=tuple(statistics),
            tabs=tuple(tabs),
            degraded=tuple(degraded),
            metadata=dict(metadata or {}),
        )
        return self._result
