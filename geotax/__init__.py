"""
GeoTax — Jurisdiction-resolving Order Pricing Service
=====================================================
Hexagonal (Ports & Adapters) architecture.

Layer map
─────────────────────────────────────────────────────
  config/       All tuneable settings (env / .env driven)
  domain/       Pure business objects (models, exceptions) — no I/O
  ports/        Abstract interfaces (Python Protocols)
  adapters/     Concrete implementations of each Port (Postgres, files…)
  services/     Spatial lookup, pricing, CSV ingestion, admission control
  interfaces/   Delivery layer: CLI, Streamlit UI
  tests/        Full test suite: unit / integration / e2e

Swapping the order store:
  1. Write a new adapter in adapters/ implementing OrderRepositoryPort
  2. Change the single wiring line in services/container.py
"""
__version__ = "1.0.0"
