"""
Financial document engine.

Pure functions over supplied arguments: no database, no network, no clock
reads. Callers pass ``now`` explicitly.
"""

from __future__ import annotations

from .aggregator import (  # noqa: F401
    LINE_CATEGORIES,
    LineItemInput,
    PrecomputedLine,
    RawLine,
    adjusted_total,
    document_subtotal,
    effective_total,
    line_input,
    section_subtotal,
)
from .conversion import (  # noqa: F401
    BILLING_TYPES,
    SNAPSHOT_FIELDS,
    EstimateSource,
    InvoiceDraft,
    SourceItem,
    convert_estimate_to_invoice,
)
from .errors import (  # noqa: F401
    ArithmeticInconsistency,
    EngineError,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from .totals import DEFAULT_TAX_RATE, Totals, compute_totals, reconcile, totals_from_subtotal  # noqa: F401
