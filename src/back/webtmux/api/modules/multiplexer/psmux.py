"""psmux controller: the base capability set, no copy mode.

psmux's plain listings already use the grammar the parser expects, so
this variant only names the binary.
"""
from __future__ import annotations

from .controller import MultiplexerController


class PsmuxController(MultiplexerController):
    binary = 'psmux'
