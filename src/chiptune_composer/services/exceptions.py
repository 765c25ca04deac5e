"""Shared service-layer exceptions."""

from __future__ import annotations


class GenerationFailure(Exception):
    """Expected failure during composition generation."""


class CompositionError(GenerationFailure):
    """Base class for errors raised by the composition pipeline."""


class ConfigurationError(CompositionError):
    """Caller supplied options that cannot be resolved."""


class UnknownPresetError(ConfigurationError):
    def __init__(self, preset: str) -> None:
        super().__init__(f"unknown style preset: {preset}")
        self.preset = preset


class CorpusError(CompositionError):
    """The static motif corpus cannot satisfy a request."""


class LengthMismatch(CorpusError):
    """A motif's declared length disagrees with its summed pattern."""

    def __init__(self, motif_id: str, expected: float, actual: float) -> None:
        super().__init__(
            f"motif {motif_id} length mismatch. expected={expected:g}, actual={actual:g}"
        )
        self.motif_id = motif_id
        self.expected = expected
        self.actual = actual


class NoCandidatesAtLength(CorpusError):
    def __init__(self, length_beats: float) -> None:
        super().__init__(f"no melody rhythm motifs available for length {length_beats:g} beats")
        self.length_beats = length_beats


class SectionLengthMismatch(CompositionError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Section length mismatch. expected={expected}, actual={actual}")
        self.expected = expected
        self.actual = actual
