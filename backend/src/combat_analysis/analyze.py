import logging
import os
from concurrent.futures import ThreadPoolExecutor

from combat_analysis.affliction_analysis import AfflictionAnalysisConfig
from combat_analysis.core_analysis import CoreAnalysisConfig
from combat_analysis.dispatcher import EventDispatcher
from combat_analysis.errors import ResultAlreadySealedError
from combat_analysis.events import Event, normalize
from combat_analysis.registry import build_modules
from combat_analysis.results import Result, ResultsAggregator, TabOutput
from encounter import EncounterContext

logger = logging.getLogger(__name__)


def built_in_tabs():
    return (TabOutput(key="overview", title="Overview", url="overview"),)


class Analyzer:
    SPEC_ANALYSIS_CONFIGS = {
        "Default": CoreAnalysisConfig,
        "Affliction": AfflictionAnalysisConfig,
    }

    def __init__(self, context: EncounterContext, analysis_config=None):
        self._context = context
        if analysis_config is None:
            analysis_config = self.SPEC_ANALYSIS_CONFIGS.get(
                self._detect_spec(),
                self.SPEC_ANALYSIS_CONFIGS["Default"],
            )()
        self._analysis_config = analysis_config
        self._graph = None
        self._dispatcher = None
        self._result = None

    def _detect_spec(self):
        return self._context.selected_combatant.spec

    @property
    def modules(self):
        return self._graph

    def _normalize_events(self, raw_events):
        for index, raw in enumerate(raw_events):
            if isinstance(raw, Event):
                yield raw
            else:
                yield normalize(raw, index=index)

    def _fight_metadata(self):
        combatant = self._context.selected_combatant
        return {
            "source": combatant.name,
            "source_id": self._context.selected_id,
            "encounter": self._context.encounter,
            "start_time": self._context.start_time,
            "end_time": self._context.end_time,
            "duration": self._context.duration,
            "spec": self._detect_spec(),
            "modules": self._graph.order,
            "num_events": self._dispatcher.num_events,
            "num_synthetic_events": self._dispatcher.num_synthetic,
        }

    def analyze(self, raw_events, tabs=None) -> Result:
        if self._result is not None:
            raise ResultAlreadySealedError()

        self._graph = build_modules(self._analysis_config.get_modules(), self._context)
        logger.info(
            "Analyzing %s for actor %s with %d modules",
            self._context.encounter or "encounter",
            self._context.selected_id,
            len(self._graph),
        )

        self._dispatcher = EventDispatcher(self._graph, self._context)
        self._dispatcher.dispatch(self._normalize_events(raw_events))

        aggregator = ResultsAggregator(self._graph)
        self._result = aggregator.seal(
            built_in_tabs=built_in_tabs() if tabs is None else tabs,
            metadata=self._fight_metadata(),
        )

        if self._result.degraded:
            logger.warning(
                "Analysis finished with degraded modules: %s",
                ", ".join(degraded.module for degraded in self._result.degraded),
            )
        return self._result


def analyze(raw_events, context: EncounterContext, analysis_config=None) -> Result:
    analyzer = Analyzer(context, analysis_config)
    return analyzer.analyze(raw_events)


def _resolve_workers(num_runs, max_workers):
    cpu = os.cpu_count() or 1
    if max_workers is None:
        return max(1, min(cpu, num_runs))
    return max(1, min(max_workers, num_runs))


def analyze_many(runs, max_workers=None):
    """Analyze independent encounters concurrently.

    ``runs`` is an iterable of ``(raw_events, context)`` pairs, every run
    gets its own module graph. Results are returned in input order and the
    first failing run's error is raised.
    """
    runs = list(runs)
    if not runs:
        return []

    workers = _resolve_workers(len(runs), max_workers)
    if workers == 1:
        return [analyze(raw_events, context) for raw_events, context in runs]

    logger.info("Analyzing %d encounters with %d workers", len(runs), workers)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [
            pool.submit(analyze, raw_events, context) for raw_events, context in runs
        ]
        return [future.result() for future in futures]
