"""
FOTOMULTAS — traffic fine ledger and evidence integration layer.
"""

__version__ = "0.1.0"
