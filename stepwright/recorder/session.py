"""Recording session: collector, idle detector, mutation tracker and API log in one unit."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from stepwright.errors import SessionConflictError
from stepwright.model.scenario import Scenario, build_scenario
from stepwright.model.steps import AssertElementStep, BaseStep, TextAssertion, VisibleAssertion
from stepwright.network.assertions import (
    IdleWindow,
    compile_exclude_patterns,
    generate_api_assertions,
    get_relevant_api_calls,
)
from stepwright.network.calls import ApiCallLog, CapturedApiCall, parse_api_call
from stepwright.recorder.collector import EventCollector
from stepwright.recorder.dom_port import DomObservationPort
from stepwright.recorder.events import NavigationEvent, RawEvent
from stepwright.recorder.idle import IdleContext, IdleDetector
from stepwright.recorder.mutations import DomMutationTracker, TrackedMutation
from stepwright.recorder.scheduling import Scheduler
from stepwright.recorder.transformer import EventTransformer, merge_type_steps
from stepwright.settings import RecorderSettings

logger = logging.getLogger("stepwright.recorder.session")


@dataclass(frozen=True)
class SynthesizedStep:
    """Assertion produced at an idle episode, placed after the first `anchor` events."""

    anchor: int
    step: BaseStep


def mutation_to_assertion(mutation: TrackedMutation) -> AssertElementStep:
    if mutation.text_content:
        return AssertElementStep(
            selector=mutation.selector,
            assertion=TextAssertion(value=mutation.text_content, contains=True),
            description=f"Auto: {mutation.tag_name} {mutation.type}",
        )
    return AssertElementStep(
        selector=mutation.selector,
        assertion=VisibleAssertion(),
        description=f"Auto: {mutation.tag_name} {mutation.type}",
    )


class RecordingSession:
    """Capture interactions for one page and synthesize assertions at idle episodes."""

    def __init__(
        self,
        session_id: str,
        start_url: str,
        *,
        scheduler: Scheduler,
        dom_port: DomObservationPort | None = None,
        settings: RecorderSettings | None = None,
        api_log: ApiCallLog | None = None,
        viewport: dict[str, int] | None = None,
        user_agent: str | None = None,
    ):
        self.session_id = session_id
        self.start_url = start_url
        self.settings = settings or RecorderSettings()
        self.viewport = viewport or {"width": 1280, "height": 720}
        self.user_agent = user_agent
        self.api_log = api_log or ApiCallLog()
        self._scheduler = scheduler
        self._transformer = EventTransformer()
        self._exclude_patterns = compile_exclude_patterns(self.settings.api_exclude_patterns)
        self.collector = EventCollector(scheduler, self.settings, self._transformer)
        self.idle_detector = IdleDetector(
            scheduler,
            self._on_idle,
            idle_threshold_ms=self.settings.idle_threshold_ms,
            min_idle_duration_ms=self.settings.min_idle_duration_ms,
        )
        self.mutation_tracker: DomMutationTracker | None = None
        if dom_port is not None:
            self.mutation_tracker = DomMutationTracker(
                dom_port,
                scheduler,
                self._on_stable,
                stability_threshold_ms=self.settings.stability_threshold_ms,
                ignore_selectors=self.settings.ignore_selectors,
                max_mutations=self.settings.max_mutation_assertions,
                test_id_attribute=self.settings.test_id_attribute,
                is_recording=lambda: self.collector.is_recording,
            )
        self._held_mutations: list[TrackedMutation] = []
        self._synthesized: list[SynthesizedStep] = []
        self._started = False
        self._closed = False
        self.collector.on_event(self._on_event)

    @property
    def active(self) -> bool:
        return self._started and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def synthesized(self) -> list[SynthesizedStep]:
        return list(self._synthesized)

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.idle_detector.start()
        if self.mutation_tracker is not None:
            self.mutation_tracker.start()
        self.collector.start(initial_url=self.start_url)
        logger.info("Recording session %s started at %s", self.session_id, self.start_url)

    def pause(self) -> None:
        self.collector.pause()
        if self.mutation_tracker is not None:
            self.mutation_tracker.reset()

    def resume(self) -> None:
        self.collector.resume()

    def ingest(self, kind: str, payload: dict[str, Any] | None) -> None:
        """Feed a page payload (click, input, keyboard, scroll, navigation)."""
        self.collector.ingest(kind, payload or {})

    def ingest_api_call(self, call: CapturedApiCall | dict[str, Any]) -> CapturedApiCall:
        if isinstance(call, dict):
            call = parse_api_call(call)
        return self.api_log.add(call)

    def stop(self) -> None:
        self.collector.stop()
        self.idle_detector.dispose()
        if self.mutation_tracker is not None:
            self.mutation_tracker.stop()

    def close(self) -> None:
        if self._closed:
            return
        self.stop()
        self._closed = True

    def steps(self) -> list[BaseStep]:
        """UI steps interleaved with synthesized assertions, then merged."""
        events = self.collector.events
        by_anchor: dict[int, list[BaseStep]] = {}
        for item in self._synthesized:
            by_anchor.setdefault(item.anchor, []).append(item.step)
        combined: list[BaseStep] = list(by_anchor.get(0, []))
        for position, event in enumerate(events, start=1):
            step = self._transformer.transform(event)
            if step is not None:
                combined.append(step)
            combined.extend(by_anchor.get(position, []))
        for anchor in sorted(anchor for anchor in by_anchor if anchor > len(events)):
            combined.extend(by_anchor[anchor])
        return merge_type_steps(combined)

    def finalize(self, name: str | None = None) -> Scenario:
        """Stop capture and return the recorded scenario document."""
        self.close()
        scenario = build_scenario(
            steps=self.steps(),
            url=self.start_url,
            viewport=self.viewport,
            name=name or self.session_id,
            user_agent=self.user_agent,
        )
        logger.info("Recording session %s finalized with %s steps", self.session_id, len(scenario.steps))
        return scenario

    def _on_event(self, event: RawEvent) -> None:
        self.idle_detector.record_event(event.type)
        if isinstance(event, NavigationEvent) and self.mutation_tracker is not None:
            self.mutation_tracker.reset()
            self._held_mutations = []

    def _on_stable(self, mutations: list[TrackedMutation]) -> None:
        self._held_mutations = list(mutations)

    def _on_idle(self, context: IdleContext) -> None:
        window = IdleWindow(
            last_event_timestamp=context.started_at,
            idle_detected_at=context.started_at + context.duration,
        )
        relevant = get_relevant_api_calls(self.api_log.calls(), window, self._exclude_patterns)
        steps: list[BaseStep] = list(generate_api_assertions(relevant, self.settings.max_api_assertions))
        steps.extend(mutation_to_assertion(mutation) for mutation in self._held_mutations)
        self._held_mutations = []
        if not steps:
            return
        anchor = len(self.collector.events)
        self._synthesized.extend(SynthesizedStep(anchor=anchor, step=step) for step in steps)
        logger.info(
            "Idle after %s: synthesized %s assertion steps (%s relevant API calls)",
            context.last_event_type,
            len(steps),
            len(relevant),
        )


class SessionRegistry:
    """Factory enforcing one active recording session per page key."""

    def __init__(self) -> None:
        self._sessions: dict[str, RecordingSession] = {}

    def create(self, key: str, start_url: str, **kwargs: Any) -> RecordingSession:
        existing = self._sessions.get(key)
        if existing is not None and not existing.closed:
            raise SessionConflictError(f"recording session already active for {key}")
        session = RecordingSession(kwargs.pop("session_id", key), start_url, **kwargs)
        self._sessions[key] = session
        return session

    def get(self, key: str) -> RecordingSession | None:
        return self._sessions.get(key)

    def active_keys(self) -> list[str]:
        return sorted(key for key, session in self._sessions.items() if session.active)

    def close(self, key: str, name: str | None = None) -> Scenario:
        session = self._sessions.pop(key, None)
        if session is None:
            raise KeyError(key)
        return session.finalize(name=name)

    def discard(self, key: str) -> None:
        session = self._sessions.pop(key, None)
        if session is not None:
            session.close()
