"""Position decision engine: patterns, reversal, exit pressure, DCA."""

__version__ = "0.1.0"
