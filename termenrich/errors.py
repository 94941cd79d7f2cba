"""
Error taxonomy for the termenrich engine.

All fatal conditions derive from EnrichmentError (a ValueError), so callers
that already guard bad input with ``except ValueError`` keep working.
InsufficientPermutations is a warning category and never interrupts a run.
"""


class EnrichmentError(ValueError):
    """Base class for invalid enrichment input"""


class InvalidTermMapping(EnrichmentError):
    """A term-to-gene record is malformed"""


class InvalidSizeBounds(EnrichmentError):
    """min_size / max_size do not describe a valid closed interval"""


class EmptyCatalog(EnrichmentError):
    """No term survived universe intersection and size filtering"""


class EmptyQuerySet(EnrichmentError):
    """The ORA query shares no gene with the universe"""


class InvalidRanking(EnrichmentError):
    """Ranking records are invalid or not sorted by descending score"""


class UnknownAdjustMethod(EnrichmentError):
    """Unrecognised multiple-testing correction method"""


class InvalidConfiguration(EnrichmentError):
    """An analysis parameter is outside its allowed range"""


class InsufficientPermutations(UserWarning):
    """
    Advisory: n_perm cannot resolve pvalue_cutoff across all tested terms.

    Emitted through ``warnings.warn``; results are still produced.
    """


class RunCancelled(RuntimeError):
    """A permutation run was cancelled before any batch finished"""
