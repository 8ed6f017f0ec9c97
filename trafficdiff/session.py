"""Diff review session: accepted suggestions, simulation and the commit batch."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .commands import Command, StartBatchCommit, EndBatchCommit, command_from_dict, commands_to_dicts
from .models import (
    EngineConfig,
    Interaction,
    AcceptedSuggestion,
    BatchCommit,
    DiffEntity,
    DiffDescription,
    RecomputeSnapshot,
    RegionKey,
    SessionState,
    Suggestion,
    SuggestionFailure,
)
from .spec import SpecificationState, EndpointDescriptor, apply_commands, build
from .normalizer import InteractionNormalizer
from .differ import DiffComputer, DiffComputation
from .grouping import DiffIndex, group_diffs, diff_key
from .regions import RegionSet
from .interpreters import DiffDescriptionInterpreter, SuggestionInterpreter
from .storage import SpecificationService, SessionProvider
from .exceptions import (
    SpecificationError,
    LoadError,
    SessionStateError,
    CommitError,
)

logger = logging.getLogger(__name__)


@dataclass
class Simulation:
    """Result of replaying accepted suggestions over a copy of the specification."""
    state: SpecificationState
    applied: int = 0
    failures: list[SuggestionFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class SuggestionAccumulator:
    """
    Accepted suggestions in acceptance order, plus the set of ignored diffs.

    Acceptance is append-only until cleared. Ignoring is independent of
    acceptance and never produces commands.
    """

    def __init__(self):
        self._accepted: list[AcceptedSuggestion] = []
        # Insertion-ordered set of diff keys
        self._ignored: dict[tuple, None] = {}

    @property
    def accepted(self) -> tuple:
        return tuple(self._accepted)

    @property
    def ignored(self) -> tuple:
        return tuple(self._ignored)

    def accept(self, suggestion: Suggestion, diff) -> AcceptedSuggestion:
        accepted = AcceptedSuggestion(
            suggestion=suggestion,
            diff_key=diff_key(diff),
            sequence=len(self._accepted),
        )
        self._accepted.append(accepted)
        return accepted

    def ignore(self, diff):
        self._ignored[diff_key(diff)] = None

    def unignore(self, diff):
        self._ignored.pop(diff_key(diff), None)

    def is_ignored(self, diff) -> bool:
        return diff_key(diff) in self._ignored

    def clear(self):
        self._accepted = []
        self._ignored = {}

    def commands(self) -> list[Command]:
        """Every accepted command, in acceptance order."""
        return [c for a in self._accepted for c in a.suggestion.commands]

    def simulate(self, base: SpecificationState, extra: Optional[Suggestion] = None) -> Simulation:
        """
        Replay all accepted suggestions from scratch over base.

        Stops at the first suggestion whose commands fail; that suggestion is
        reported in failures and stays accepted.
        """
        pending = [a.suggestion for a in self._accepted]
        if extra is not None:
            pending.append(extra)

        simulation = Simulation(state=base)
        for index, suggestion in enumerate(pending):
            try:
                simulation.state = apply_commands(simulation.state, suggestion.commands)
            except SpecificationError as e:
                logger.warning("Suggestion %d (%s) does not apply: %s", index, suggestion.title, e)
                simulation.failures.append(SuggestionFailure(index, suggestion.title, str(e)))
                break
            simulation.applied += 1
        return simulation

    def build_batch(self, batch_id: str, message: str) -> list[Command]:
        """Start marker, every accepted command in order, end marker."""
        return [StartBatchCommit(batch_id, message)] + self.commands() + [EndBatchCommit(batch_id)]


class DiffReviewSession:
    """
    Reviews the diffs between a specification and a capture session.

    Diffs are computed against the simulated specification (the real one plus
    every accepted suggestion), so accepting a suggestion removes the diffs
    it resolves. The real specification changes only through commit().

    Usage:
        session = DiffReviewSession(spec_service, session_provider, "spec-1")
        await session.load("capture-1")
        for entity in session.regions().all():
            suggestion = session.suggestions_for(entity)[0]
            session.accept(suggestion, entity)
        await session.commit("Document observed behaviour")
    """

    def __init__(
        self,
        spec_service: SpecificationService,
        session_provider: SessionProvider,
        spec_id: str,
        config: Optional[EngineConfig] = None,
        on_recompute: Optional[Callable[[RecomputeSnapshot], Any]] = None,
        on_committed: Optional[Callable[[BatchCommit], Any]] = None,
    ):
        self.spec_service = spec_service
        self.session_provider = session_provider
        self.spec_id = spec_id
        self.config = config or EngineConfig()
        self.on_recompute = on_recompute
        self.on_committed = on_committed

        logging.getLogger("trafficdiff").setLevel(self.config.log_level.to_logging())

        self.normalizer = InteractionNormalizer(self.config)
        self.accumulator = SuggestionAccumulator()
        self.state = SessionState.IDLE
        self.session_id: Optional[str] = None
        self.has_session = False

        self._loaded = False
        self._committing = False
        self._base: Optional[SpecificationState] = None
        self._events: list[Command] = []
        self._interactions: list[Interaction] = []
        self._generation = 0
        self._cache_marker: Optional[tuple] = None
        self._cache: Optional[tuple] = None

    # Loading

    async def load(self, session_id: Optional[str]):
        """
        Load the specification and the capture session.

        Both must succeed; otherwise LoadError is raised and nothing is kept.
        A missing session is not an error: the session loads with no samples.
        """
        self._guard("load", allow_finishing=False)
        self._unload()

        try:
            events = await self.spec_service.list_events()
            commands = [
                command_from_dict(e) if isinstance(e, dict) else e
                for e in events or []
            ]
            base = build(commands)
        except Exception as e:
            logger.error("Failed to load specification %s: %s", self.spec_id, e)
            raise LoadError(f"specification {self.spec_id}", e) from e

        try:
            samples = None
            if session_id is not None:
                samples = await self.session_provider.load_samples(session_id)
            interactions = [
                s if isinstance(s, Interaction) else self.normalizer.normalize(s)
                for s in samples or []
            ]
        except Exception as e:
            logger.error("Failed to load capture session %s: %s", session_id, e)
            raise LoadError(f"session {session_id}", e) from e

        self._base = base
        self._events = commands
        self._interactions = interactions
        self.session_id = session_id
        self.has_session = samples is not None
        self._loaded = True
        self._generation += 1

        logger.info(
            "Loaded specification %s (%d events) and %d samples",
            self.spec_id, len(commands), len(interactions)
        )
        self._refresh()

    def _unload(self):
        self._loaded = False
        self._base = None
        self._events = []
        self._interactions = []
        self._cache = None
        self._cache_marker = None
        self.accumulator.clear()
        self.has_session = False
        self.state = SessionState.IDLE

    # Guards and recomputation

    def _require_loaded(self, action: str):
        if not self._loaded:
            raise SessionStateError(self.state, action)

    def _guard(self, action: str, allow_finishing: bool = True):
        if self._committing:
            raise SessionStateError(self.state, f"{action} during commit")
        if self.state == SessionState.FINISHING and not allow_finishing:
            raise SessionStateError(self.state, action)

    def _guard_mutation(self, action: str):
        self._guard(action, allow_finishing=False)
        self._require_loaded(action)
        if self.state == SessionState.COMMITTED:
            raise SessionStateError(self.state, action)

    def _computed(self) -> tuple[Simulation, DiffComputation, DiffIndex]:
        self._require_loaded("query diffs")
        marker = (self._generation, len(self.accumulator.accepted))
        if self._cache_marker != marker:
            simulation = self.accumulator.simulate(self._base)
            computation = DiffComputer(simulation.state, self.config).compute(self._interactions)
            index = group_diffs(computation.results, self.config.max_examples_per_diff)
            self._cache = (simulation, computation, index)
            self._cache_marker = marker
        return self._cache

    def _refresh(self):
        """Bring the cache up to date, settle the review state and notify."""
        simulation, computation, index = self._computed()
        visible = index.filter_out(self.accumulator.ignored)

        if self.state in (SessionState.IDLE, SessionState.REVIEWING):
            if visible or self.accumulator.accepted:
                self.state = SessionState.REVIEWING
            else:
                self.state = SessionState.IDLE

        snapshot = RecomputeSnapshot(
            sample_count=len(self._interactions),
            entity_count=len(index),
            visible_count=len(visible),
            accepted_count=len(self.accumulator.accepted),
            ignored_count=len(self.accumulator.ignored),
            endpoint_errors=dict(computation.endpoint_errors),
            simulation_failures=list(simulation.failures),
        )
        logger.debug(
            "Recomputed: %d samples, %d diffs (%d visible), %d accepted, %d ignored",
            snapshot.sample_count, snapshot.entity_count, snapshot.visible_count,
            snapshot.accepted_count, snapshot.ignored_count
        )
        if self.on_recompute is not None:
            self.on_recompute(snapshot)

    # Queries

    @property
    def spec_state(self) -> SpecificationState:
        """The real specification, unchanged by accepted suggestions."""
        self._require_loaded("read the specification")
        return self._base

    @property
    def simulation(self) -> Simulation:
        return self._computed()[0]

    @property
    def endpoint_errors(self) -> dict:
        return dict(self._computed()[1].endpoint_errors)

    @property
    def accepted(self) -> tuple:
        return self.accumulator.accepted

    @property
    def ignored(self) -> tuple:
        return self.accumulator.ignored

    @property
    def interactions(self) -> list[Interaction]:
        return list(self._interactions)

    def regions(self) -> RegionSet:
        """Visible diffs of every endpoint, including unmatched URLs."""
        return self._computed()[2].list_regions(self.accumulator.ignored)

    def regions_for(self, path_id: str, method: str) -> RegionSet:
        """
        Visible diffs of one endpoint.

        Raises:
            SpecificationError: if the endpoint's shapes hold a dangling reference
        """
        _, computation, index = self._computed()
        error = computation.endpoint_errors.get((path_id, method.upper()))
        if error is not None:
            raise error
        return index.list_regions(self.accumulator.ignored, path_id, method)

    def unmatched_urls(self) -> list[DiffEntity]:
        return self.regions().unmatched_path

    def diffs_in_region(self, key: RegionKey) -> list[DiffEntity]:
        return self.regions().diffs_in(key)

    def is_region_active(self, key: RegionKey, selected_diff) -> bool:
        return self.regions().is_active(key, selected_diff)

    def interactions_for(self, diff) -> list[Interaction]:
        return self._computed()[2].get(diff)

    def _entity(self, diff):
        entity = self._computed()[2].entity(diff)
        return entity if entity is not None else diff

    def description(self, diff, interaction: Optional[Interaction] = None) -> DiffDescription:
        state = self.simulation.state
        return DiffDescriptionInterpreter(state).interpret(self._entity(diff), interaction)

    def suggestions_for(self, diff, interaction: Optional[Interaction] = None) -> list[Suggestion]:
        state = self.simulation.state
        return SuggestionInterpreter(state, self.config).interpret(self._entity(diff), interaction)

    def preview(self, suggestion: Suggestion) -> Simulation:
        """Simulation with one more, not accepted, suggestion."""
        self._require_loaded("preview")
        return self.accumulator.simulate(self._base, extra=suggestion)

    def endpoint_descriptor(self, path_id: str, method: str) -> Optional[EndpointDescriptor]:
        return self.simulation.state.endpoint_descriptor(path_id, method)

    def should_offer_accept_all(self, path_id: str, method: str) -> bool:
        """True for an endpoint with nothing declared yet and diffs to learn from."""
        descriptor = self.endpoint_descriptor(path_id, method)
        if descriptor is not None and not descriptor.is_empty:
            return False
        return not self.regions_for(path_id, method).is_empty

    # Mutations

    def accept(self, suggestion: Suggestion, diff) -> AcceptedSuggestion:
        self._guard_mutation("accept a suggestion")
        accepted = self.accumulator.accept(suggestion, diff)
        logger.debug("Accepted '%s'", suggestion.title)
        self._refresh()
        return accepted

    def ignore(self, diff):
        self._guard_mutation("ignore a diff")
        self.accumulator.ignore(diff)
        self._refresh()

    def unignore(self, diff):
        self._guard_mutation("unignore a diff")
        self.accumulator.unignore(diff)
        self._refresh()

    def accept_all(self, path_id: Optional[str] = None, method: Optional[str] = None) -> list[AcceptedSuggestion]:
        """
        Accept the default suggestion of every visible diff of an endpoint.

        Each diff is re-resolved after every acceptance, so diffs resolved by
        an earlier suggestion are skipped.
        """
        self._guard_mutation("accept all")
        index = self._computed()[2]
        pending = [e.key for e in index.list_regions(self.accumulator.ignored, path_id, method).all()]

        accepted = []
        for key in pending:
            entity = self._computed()[2].entity(key)
            if entity is None:
                continue
            suggestions = self.suggestions_for(entity)
            if not suggestions:
                continue
            accepted.append(self.accumulator.accept(suggestions[0], entity))
            self._refresh()
        return accepted

    def ignore_all(self, path_id: Optional[str] = None, method: Optional[str] = None):
        self._guard_mutation("ignore all")
        for entity in self._computed()[2].list_regions(self.accumulator.ignored, path_id, method).all():
            self.accumulator.ignore(entity)
        self._refresh()

    def reset(self):
        """Clear accepted suggestions and ignored diffs, back to the real specification."""
        self._guard("reset")
        self._require_loaded("reset")
        if self.state == SessionState.COMMITTED:
            raise SessionStateError(self.state, "reset")
        self.accumulator.clear()
        self._generation += 1
        self.state = SessionState.REVIEWING
        self._refresh()

    discard = reset

    def begin_finishing(self):
        self._guard("finish")
        self._require_loaded("finish")
        if self.state != SessionState.REVIEWING:
            raise SessionStateError(self.state, "finish")
        self.state = SessionState.FINISHING

    def cancel_finishing(self):
        self._guard("cancel finishing")
        if self.state != SessionState.FINISHING:
            raise SessionStateError(self.state, "cancel finishing")
        self.state = SessionState.REVIEWING
        self._refresh()

    async def commit(self, message: str) -> BatchCommit:
        """
        Apply every accepted suggestion to the real specification as one batch
        and save the resulting log.

        Raises:
            CommitError: if the batch does not apply or cannot be saved; the
                real specification is unchanged and the session stays FINISHING
        """
        self._guard("commit")
        self._require_loaded("commit")
        if self.state == SessionState.REVIEWING:
            self.begin_finishing()
        if self.state != SessionState.FINISHING:
            raise SessionStateError(self.state, "commit")

        batch_id = str(uuid.uuid4())
        batch = self.accumulator.build_batch(batch_id, message)
        logger.info("Committing batch %s with %d commands", batch_id, len(batch) - 2)

        self._committing = True
        try:
            new_state = apply_commands(self._base, batch)
            events = self._events + batch
            await self.spec_service.save_events(commands_to_dicts(events), self.spec_id)
        except Exception as e:
            logger.error("Commit %s failed: %s", batch_id, e)
            raise CommitError(batch_id, e) from e
        finally:
            self._committing = False

        self._base = new_state
        self._events = events
        self.accumulator.clear()
        self._generation += 1
        self.state = SessionState.COMMITTED
        self._refresh()

        commit = new_state.batches[-1]
        logger.info("Committed batch %s to specification %s", batch_id, self.spec_id)
        if self.on_committed is not None:
            self.on_committed(commit)
        return commit
