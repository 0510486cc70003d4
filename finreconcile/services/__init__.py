"""
Services package.

Subpackages:
- fetching: per-source cache, rate-limit gate and cached fetcher
- aggregation: merge of per-source snapshots
- contradictions: cross-source contradiction detection and risk scoring
- storage: audit storage sinks

Import from the subpackages directly; this module stays empty so the
audit logger can depend on storage without import cycles.
"""
