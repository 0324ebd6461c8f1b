"""
Back-Office Kernel

Primitives shared by every document workflow:
- Typed error taxonomy with stable kinds
- Structured JSON logging with context propagation
- Injectable clock
- Declarative workflow tables
- Atomic code generation from locked counters
- Append-only, hash-chained audit trail
- Idempotent side-effect dispatch ledger
"""

__version__ = "0.1.0"
