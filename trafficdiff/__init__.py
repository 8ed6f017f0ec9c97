"""
TrafficDiff - Diff engine for observed API traffic against a recorded specification

Computes the discrepancies between recorded HTTP interactions and an
event-sourced API specification, groups them into regions for review,
describes them, suggests specification changes that resolve them and commits
accepted changes as one atomic batch.
"""

from .models import (
    EngineConfig,
    LogLevel,
    Interaction,
    NO_CONTENT_TYPE,
    DiffKind,
    ShapeMismatch,
    DiffLocation,
    DiffResult,
    DiffEntity,
    RegionArea,
    RegionKey,
    DiffDescription,
    Suggestion,
    AcceptedSuggestion,
    BatchCommit,
    SessionState,
    RecomputeSnapshot,
)
from .spec import (
    SpecificationState,
    EndpointDescriptor,
    build,
    apply_commands,
)
from .normalizer import InteractionNormalizer
from .differ import DiffComputer, DiffComputation
from .grouping import DiffIndex, group_diffs
from .regions import RegionSet
from .interpreters import DiffDescriptionInterpreter, SuggestionInterpreter
from .session import DiffReviewSession, SuggestionAccumulator, Simulation
from .schema_import import commands_from_openapi, commands_from_schema
from .storage import (
    SpecificationService,
    SessionProvider,
    FileSpecificationService,
    FileSessionProvider,
    load_engine_config,
)

__version__ = "1.0.0"
__all__ = [
    # Configuration
    "EngineConfig",
    "LogLevel",
    "load_engine_config",
    # Specification
    "SpecificationState",
    "EndpointDescriptor",
    "build",
    "apply_commands",
    "commands_from_openapi",
    "commands_from_schema",
    # Traffic
    "Interaction",
    "InteractionNormalizer",
    "NO_CONTENT_TYPE",
    # Diffs
    "DiffComputer",
    "DiffComputation",
    "DiffKind",
    "ShapeMismatch",
    "DiffLocation",
    "DiffResult",
    "DiffEntity",
    "DiffIndex",
    "group_diffs",
    # Regions
    "RegionArea",
    "RegionKey",
    "RegionSet",
    # Interpretation
    "DiffDescriptionInterpreter",
    "SuggestionInterpreter",
    "DiffDescription",
    "Suggestion",
    # Review session
    "DiffReviewSession",
    "SuggestionAccumulator",
    "Simulation",
    "AcceptedSuggestion",
    "BatchCommit",
    "SessionState",
    "RecomputeSnapshot",
    # Collaborators
    "SpecificationService",
    "SessionProvider",
    "FileSpecificationService",
    "FileSessionProvider",
]
