"""Exception and warning categories raised or recorded by hierbaps."""

from __future__ import annotations


class InputError(ValueError):
    """Malformed or empty SNP matrix; raised before any search begins."""


class DegenerateInputWarning(UserWarning):
    """No variable sites remain at a recursion level.

    Not an error: the optimizer converges immediately to a single cluster.
    """


class ResourceExhaustion(UserWarning):
    """A branch exceeded its size limit or the run's time budget.

    The branch is closed early with a best-effort result. Sibling
    branches are unaffected.
    """
