"""
Belief Revision - sequential Bayesian updating over discrete hypotheses.

Tracks a probability distribution over mutually exclusive hypotheses and
revises it as certain or uncertain (Jeffrey) evidence arrives, with an
undo/redo history that always replays deterministically.

Modules:
    errors - Exception types
    updates - Normalization, log-space arithmetic, Bayes and Jeffrey updates
    steps - Certain and Jeffrey evidence step records
    hypotheses - Immutable hypothesis set operations
    history - Timeline/history/redo state machine
    session - Session object and command messages
    config - YAML configuration and display settings
    storage - JSON snapshot persistence and background saving
    export - CSV exports and history summaries
    cli - Command-line interface entrypoints
"""

from . import errors
from . import updates
from . import steps
from . import hypotheses
from . import history
from . import session
from . import config
from . import storage
from . import export

__version__ = "1.0.0"
