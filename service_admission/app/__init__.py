"""
Admission Service package for the DERP Admission Gateway.

This package answers DERP relay admit-client requests. It provides:

- app.main: API surface for admission decisions and health.
- app.oauth: Client-credentials exchange for per-organization tokens.
- app.directory: Device listing and node key extraction.
- app.cache: Key-value backed store for the authorized node key set.
- app.refresh: Staleness check and all-or-nothing refresh fan-out.

Guidelines:
- The service is stateless; all shared state lives in the key-value store.
- A refresh replaces the whole key set or leaves it untouched.
"""
