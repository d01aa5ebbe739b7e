"""
Driving Simulator Telemetry Ingestion Core

This package implements a layered ingestion pipeline for game-client
telemetry. Each layer communicates only through explicit contracts,
never through shared mutable state.

LAYER STRUCTURE:
================

1. NORMALIZATION LAYER (normalization/)
   - Responsibility: Parse pipe/JSON payloads, suppress repeated emissions
   - Allowed inputs: RawSubmission from the transport
   - Outputs: NormalizedEvent (immutable) or an Error value
   - MUST NOT: Touch session state, perform I/O

2. CORE LAYER (core/)
   - Responsibility: Severity classification, per-session aggregation
   - Allowed inputs: NormalizedEvent
   - Outputs: SeverityAnnotation, AggregationResult (immutable)
   - MUST NOT: Persist data, wait on the network

3. STORAGE LAYER (storage/)
   - Responsibility: Ordered, retrying hand-off to the persistence gateway
   - Allowed inputs: Event documents and session snapshots
   - Outputs: FlushReport, persisted documents
   - MUST NOT: Interpret records, block producers

4. QUERY LAYER (query/)
   - Responsibility: Read-only session statistics and user totals
   - MUST NOT: Mutate state

5. OBSERVABILITY LAYER (observability/)
   - Responsibility: Logging setup, metrics, health
   - MUST NOT: Modify system behavior

The Ingestor (engine.py) wires the layers; api/ is an optional HTTP shell.

CONSTRAINTS ENFORCED:
=====================
- Immutability at boundaries: everything that crosses a layer is frozen
- Server time only: client timestamps are kept for reference, never trusted
- Explicit errors: bad input becomes an Error value, never an exception
- Fire-and-forget ingress: callers never wait on persistence
"""

from .engine import Ingestor, IngestorConfig
from .query import QueryService

__all__ = ['Ingestor', 'IngestorConfig', 'QueryService']
